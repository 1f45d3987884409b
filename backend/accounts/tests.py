from django.test import TestCase
from rest_framework.authtoken.models import Token
from rest_framework.test import APIClient

from accounts.models import CustomUser


class LoginViewTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = CustomUser.objects.create_user(username="manager_user", password="secret", role="manager")

    def test_login_returns_token_and_role(self):
        resp = self.client.post("/api/auth/login/", {"username": "manager_user", "password": "secret"}, format="json")
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data["role"], "manager")
        self.assertEqual(data["token"], Token.objects.get(user=self.user).key)

    def test_token_authenticates_engine_calls(self):
        token = self.client.post(
            "/api/auth/login/", {"username": "manager_user", "password": "secret"}, format="json"
        ).json()["token"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Token {token}")
        resp = self.client.get("/api/tarifa-engine/audit")
        self.assertEqual(resp.status_code, 200)

    def test_bad_credentials(self):
        resp = self.client.post("/api/auth/login/", {"username": "manager_user", "password": "nope"}, format="json")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["message"], "Invalid credentials")

    def test_missing_fields(self):
        resp = self.client.post("/api/auth/login/", {"username": "manager_user"}, format="json")
        self.assertEqual(resp.status_code, 400)

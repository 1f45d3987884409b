from django.core.management.base import BaseCommand
from django.contrib.auth.hashers import make_password
from accounts.models import CustomUser

TEST_USERS = [
    {'username': 'operator_user', 'password': 'operator_password', 'role': 'operator'},
    {'username': 'manager_user', 'password': 'manager_password', 'role': 'manager'},
    {'username': 'admin_user', 'password': 'admin_password', 'role': 'admin'},
]


class Command(BaseCommand):
    help = 'Create one test user per role (operator, manager, admin)'

    def handle(self, *args, **options):
        created = 0
        for user_data in TEST_USERS:
            if CustomUser.objects.filter(username=user_data['username']).exists():
                self.stdout.write(
                    self.style.WARNING(f"User {user_data['username']} already exists")
                )
                continue

            user = CustomUser.objects.create(
                username=user_data['username'],
                password=make_password(user_data['password']),
                role=user_data['role']
            )
            created += 1
            self.stdout.write(
                self.style.SUCCESS(f"Successfully created {user_data['role']} user: {user.username}")
            )

        self.stdout.write(self.style.SUCCESS(f"Test users ready ({created} created)"))

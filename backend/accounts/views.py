import json
from django.contrib.auth import authenticate
from django.views.decorators.csrf import csrf_exempt
from django.http import JsonResponse
from rest_framework.authtoken.models import Token
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny


def _error(message: str, status_code: int):
    """Error payload shape shared with the engine endpoints."""
    return JsonResponse({'message': message, 'detail': message}, status=status_code)


@csrf_exempt
@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def login_view(request):
    """
    Exchange username/password for an API token plus the user's role.
    """
    try:
        data = json.loads(request.body or b'{}')
    except json.JSONDecodeError:
        return _error('Invalid JSON', 400)

    username = data.get('username')
    password = data.get('password')
    if not username or not password:
        return _error('Username and password required', 400)

    user = authenticate(username=username, password=password)
    if not user:
        return _error('Invalid credentials', 401)

    token, _ = Token.objects.get_or_create(user=user)

    return JsonResponse({
        'token': token.key,
        'role': user.role,
        'username': user.username
    })

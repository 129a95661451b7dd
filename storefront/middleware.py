# storefront/middleware.py
import logging
from urllib.parse import urlencode

from django.conf import settings
from django.http import HttpRequest, HttpResponse
from django.shortcuts import redirect
from django.utils.cache import patch_vary_headers

from accounts.models import is_admin

logger = logging.getLogger(__name__)


class ApiCorsMiddleware:
    """
    CORS headers for /api/ routes, short-circuits preflight requests.
    Only origins in CORS_ALLOWED_ORIGINS are echoed back, with credentials.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request: HttpRequest):
        if not request.path.startswith('/api/'):
            return self.get_response(request)

        if request.method == 'OPTIONS':
            response = HttpResponse(status=204)
        else:
            response = self.get_response(request)

        patch_vary_headers(response, ('Origin',))
        origin = request.headers.get('Origin', '').rstrip('/')
        if origin and origin in settings.CORS_ALLOWED_ORIGINS:
            response['Access-Control-Allow-Origin'] = origin
            response['Access-Control-Allow-Credentials'] = 'true'
            response['Access-Control-Allow-Methods'] = 'GET, POST, PUT, DELETE, OPTIONS'
            response['Access-Control-Allow-Headers'] = 'Content-Type, Authorization, X-CSRFToken'
        elif origin:
            logger.debug(f"CORS origin not allowed: {origin}")
        return response



class AdminRoleMiddleware:
    """
    Gate the /admin/ back-office on the profile role.
    Must run after AuthenticationMiddleware.
    """

    LOGIN_PATH = '/admin/login/'

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request: HttpRequest):
        if not request.path.startswith('/admin/') or request.path.startswith(self.LOGIN_PATH):
            return self.get_response(request)

        user = request.user
        if not user.is_authenticated:
            return redirect(f"{self.LOGIN_PATH}?{urlencode({'next': request.path})}")

        if not is_admin(user):
            logger.warning(f"Non-admin user {user.pk} tried to open {request.path}")
            return redirect(f"{self.LOGIN_PATH}?{urlencode({'error': 'unauthorized'})}")

        response = self.get_response(request)

        # Security headers
        response['X-Frame-Options'] = 'DENY'
        response['X-Content-Type-Options'] = 'nosniff'
        response['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response['Permissions-Policy'] = 'camera=(), microphone=(), geolocation=()'
        response['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'

        return response

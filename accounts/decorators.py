from functools import wraps

from django.http import JsonResponse

from .models import is_admin


def api_login_required(view_func):
    """401 JSON instead of a login redirect"""
    @wraps(view_func)
    def wrapped(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse({"success": False, "error": "Unauthorized"}, status=401)
        return view_func(request, *args, **kwargs)
    return wrapped


def api_admin_required(view_func):
    """401 when anonymous, 403 when the profile role is not admin"""
    @wraps(view_func)
    def wrapped(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse({"success": False, "error": "Unauthorized"}, status=401)
        if not is_admin(request.user):
            return JsonResponse({"success": False, "error": "Forbidden"}, status=403)
        return view_func(request, *args, **kwargs)
    return wrapped

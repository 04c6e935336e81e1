"""
Blogsite URL Configuration
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'Blogsite API Server',
        'version': '1.0',
        'endpoints': {
            'home': '/api/blogs/home/',
            'categories': '/api/blogs/categories/',
            'blog': '/api/blogs/<slug>/',
            'react': '/api/blogs/<slug>/react/',
            'comments': '/api/blogs/<slug>/comment/',
            'replies': '/api/blogs/comment/<id>/reply/',
            'auth': '/api/auth/',
        },
        'admin': '/admin/',
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('admin/', admin.site.urls),
    path('api/', include('blog.urls')),
]

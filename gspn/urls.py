from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from django.conf.urls.static import static


urlpatterns = [
    path('api/school/', include('admin_site.urls')),
    path('api/students/', include('student.urls')),
    path('api/finance/', include('finance.urls')),
    path('api/attendance/', include('attendance.urls')),
    path('api/grading/', include('grading.urls')),
    path('django-admin/', admin.site.urls),

]

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)

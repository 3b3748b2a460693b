from django.urls import path, include


urlpatterns = [
    path('markbook/', include('markbook.urls')),
    path('legacy/', include('legacy.urls')),
]

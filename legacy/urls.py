from django.urls import path
from . import views

app_name = 'legacy'

urlpatterns = [
    path('import/', views.import_class, name='import_class'),
]

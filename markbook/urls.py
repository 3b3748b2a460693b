from django.urls import path
from . import views

app_name = 'markbook'

urlpatterns = [
    # Mark set summary and analytics
    path(
        'classes/<str:class_id>/mark-sets/<str:mark_set_id>/summary/',
        views.mark_set_summary,
        name='mark_set_summary'
    ),
    path(
        'classes/<str:class_id>/mark-sets/<str:mark_set_id>/analytics/',
        views.class_analytics,
        name='class_analytics'
    ),
    path(
        'classes/<str:class_id>/mark-sets/<str:mark_set_id>/analytics/students/<str:student_id>/',
        views.student_analytics,
        name='student_analytics'
    ),
    path(
        'classes/<str:class_id>/mark-sets/<str:mark_set_id>/filter-options/',
        views.filter_options,
        name='filter_options'
    ),
]

from django.urls import path
from . import views

app_name = 'jobs'

urlpatterns = [
    # Customer job APIs
    path('jobs/', views.create_job, name='create-job'),
    path('jobs/<int:job_id>/', views.get_job, name='job-detail'),
    path('jobs/<int:job_id>/cancel/', views.cancel_job, name='cancel-job'),

    # Driver job actions
    path('assignments/<int:assignment_id>/respond/', views.respond_to_assignment, name='respond-assignment'),
    path('jobs/<int:job_id>/start/', views.start_job, name='start-job'),
    path('jobs/<int:job_id>/complete/', views.complete_job, name='complete-job'),

    # Matching ops
    path('matching/find/', views.find_drivers, name='find-drivers'),
    path('matching/assign/', views.assign_job, name='assign-job'),
    path('matching/health/', views.matching_health, name='matching-health'),
    path('matching/statistics/', views.matching_statistics, name='matching-statistics'),
    path('reassignment-queue/', views.reassignment_queue, name='reassignment-queue'),
    path('reassignment-queue/process/', views.process_reassignment_queue, name='process-reassignment-queue'),
]

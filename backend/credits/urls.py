from django.urls import path
from . import views

app_name = 'credits'

urlpatterns = [
    path('drivers/<int:driver_id>/add/', views.add_credits, name='add-credits'),
    path('drivers/<int:driver_id>/deduct/', views.deduct_credits, name='deduct-credits'),
    path('drivers/<int:driver_id>/refund/', views.refund_credits, name='refund-credits'),
    path('drivers/<int:driver_id>/statistics/', views.credit_statistics, name='credit-statistics'),
]

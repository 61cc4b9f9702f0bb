from django.urls import path
from main.views import order_views


app_name = 'main'


urlpatterns = [
    path('orders/<int:order_id>/complete', order_views.complete_order, name='complete_order'),
]

from django.urls import path

from alfie.providers.api import views

app_name = "providers"

urlpatterns = [
    path("select", views.select_provider, name="select-provider"),
]

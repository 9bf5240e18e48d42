from django.urls import include, path

urlpatterns = [
    path("", include("bulk_distances.urls")),
]

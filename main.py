"""Cloud Functions entry point for the Excel Image Mapper."""

import functions_framework


@functions_framework.http
def excel_image_mapper(request):
    """Cloud Function entry point - dispatch into the Flask application."""
    from image_mapper.main import image_mapper_handler

    return image_mapper_handler(request)

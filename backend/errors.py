class GardenError(Exception):
    """Base error for request-level failures; carries the HTTP status to answer with."""

    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(GardenError):
    status_code = 400


class NotFoundError(GardenError):
    status_code = 404


class ConflictError(GardenError):
    status_code = 409


class InsufficientSeedsError(GardenError):
    status_code = 400

    def __init__(self, message='Not enough seeds'):
        super().__init__(message)


class InsufficientCropsError(GardenError):
    status_code = 400

    def __init__(self, message='Not enough crops'):
        super().__init__(message)


class GitHubError(GardenError):
    """Raised when GitHub answers with an error or cannot be reached."""

    status_code = 502


class UploadError(GardenError):
    """Raised when an image cannot be stored on Cloudinary."""

    status_code = 502

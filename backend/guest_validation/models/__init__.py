from guest_validation.models.guest import Guest

__all__ = ["Guest"]

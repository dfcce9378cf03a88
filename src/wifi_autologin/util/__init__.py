from .urls import origin_of, same_origin

__all__ = ["origin_of", "same_origin"]

from admin.model.admin import AdminConfig, CorsConfig

__all__ = ["AdminConfig", "CorsConfig"]

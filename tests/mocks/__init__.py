from .mock_platform import MockInventoryPlatform, no_sleep, user_errors_result

__all__ = ["MockInventoryPlatform", "no_sleep", "user_errors_result"]

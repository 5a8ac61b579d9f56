from .route import forward_live_data, is_live_data_path

__all__ = ["forward_live_data", "is_live_data_path"]

"""
유틸리티 모듈
"""

from .style_preprocessor import (
    normalize_style_name,
    style_id_for,
    infer_category
)
from .image_utils import (
    compress_image,
    parse_data_uri,
    to_data_uri
)

__all__ = [
    'normalize_style_name',
    'style_id_for',
    'infer_category',
    'compress_image',
    'parse_data_uri',
    'to_data_uri'
]

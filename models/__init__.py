# models/__init__.py
"""
Hair Director - 분석 결과 스키마

Gemini 얼굴 분석 응답을 검증하는 Pydantic 모델을 제공합니다.
"""

from .schemas import (
    AnalysisResult,
    AvoidStyle,
    FaceFeature,
    FaceShape,
    FeatureImpact,
    Recommendation,
    SkinTone,
)

__all__ = [
    "AnalysisResult",
    "AvoidStyle",
    "FaceFeature",
    "FaceShape",
    "FeatureImpact",
    "Recommendation",
    "SkinTone",
]

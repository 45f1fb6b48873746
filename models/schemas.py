"""Pydantic models for the face analysis result returned by Gemini"""

from enum import Enum
from typing import List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class FaceShape(str, Enum):
    OVAL = "oval"
    ROUND = "round"
    SQUARE = "square"
    OBLONG = "oblong"
    HEART = "heart"
    DIAMOND = "diamond"


class SkinTone(str, Enum):
    FAIR = "fair"
    MEDIUM = "medium"
    TAN = "tan"
    DARK = "dark"


class FeatureImpact(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    CONSIDERATION = "consideration"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys for the web client"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class FaceFeature(CamelModel):
    name: str
    label: str = Field(default="", validation_alias=AliasChoices("label", "nameKo"))
    impact: FeatureImpact = FeatureImpact.NEUTRAL


class Recommendation(CamelModel):
    id: str = ""
    name: str
    reason: str = ""
    score: int = Field(default=0, ge=0, le=100)
    priority: int = Field(default=1, ge=1)


class AvoidStyle(CamelModel):
    name: str
    reason: str = ""


class AnalysisResult(CamelModel):
    """
    Face analysis produced by the analysis collaborator

    Immutable once received. The three face-third ratios always sum to 100:
    collaborator output that drifts (e.g. 33/33/33) is rescaled, with the
    rounding remainder assigned to the middle third.
    """

    face_shape: FaceShape
    face_shape_label: str = Field(
        default="", validation_alias=AliasChoices("faceShapeLabel", "faceShapeKo", "face_shape_label")
    )
    skin_tone: SkinTone = SkinTone.MEDIUM
    skin_tone_label: str = Field(
        default="", validation_alias=AliasChoices("skinToneLabel", "skinToneKo", "skin_tone_label")
    )
    upper_ratio: int = 33
    middle_ratio: int = 34
    lower_ratio: int = 33
    overall_impression: str = ""
    features: List[FaceFeature] = Field(default_factory=list)
    styling_tips: List[str] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    avoid_styles: List[AvoidStyle] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize_ratios(cls, data):
        if not isinstance(data, dict):
            return data

        data = dict(data)
        keys = []
        for snake, camel in (("upper_ratio", "upperRatio"),
                             ("middle_ratio", "middleRatio"),
                             ("lower_ratio", "lowerRatio")):
            keys.append(camel if camel in data else snake)

        try:
            values = [float(data.get(k, 0) or 0) for k in keys]
        except (TypeError, ValueError):
            values = [0.0, 0.0, 0.0]

        total = sum(values)
        if total <= 0:
            scaled = [33, 34, 33]
        else:
            scaled = [int(round(v * 100 / total)) for v in values]
            scaled[1] += 100 - sum(scaled)

        for key, value in zip(keys, scaled):
            data[key] = value
        return data

    @property
    def recommended_names(self) -> List[str]:
        """Recommendation names in the order the collaborator returned them"""
        return [r.name for r in self.recommendations]

    @property
    def feature_names(self) -> List[str]:
        return [f.name for f in self.features]

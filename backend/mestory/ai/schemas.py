from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


# --- writing assistant ---
class ContinuationsAI(BaseModel):
    suggestions: list[str] = Field(default_factory=list)


class QualityScoresAI(BaseModel):
    writingQuality: float = Field(default=0, ge=0, le=100)
    plotStructure: float = Field(default=0, ge=0, le=100)
    characterDevelopment: float = Field(default=0, ge=0, le=100)
    dialogue: float = Field(default=0, ge=0, le=100)
    setting: float = Field(default=0, ge=0, le=100)
    originality: float = Field(default=0, ge=0, le=100)


class QualityAnalysisAI(BaseModel):
    scores: QualityScoresAI
    feedback: str = ""
    suggestions: list[str] = Field(default_factory=list)


class CoverColorsAI(BaseModel):
    backgroundColor: str
    gradientColors: list[str] = Field(default_factory=list)
    titleColor: str
    authorColor: str
    suggestion: str = ""


class CoverConceptAI(BaseModel):
    type: Literal["gradient", "pattern"] = "gradient"
    backgroundColor: str
    gradientColors: list[str] = Field(default_factory=list)
    pattern: str = ""
    overlayOpacity: float = Field(default=0.3, ge=0, le=1)
    suggestion: str = ""


# --- book design ---
class DesignColorsAI(BaseModel):
    text: str = "#1a1a2e"
    heading: str = "#16213e"
    accent: str = "#e94560"


class TypographyAI(BaseModel):
    bodyFont: str = ""
    headingFont: str = ""
    titleFont: str = ""
    fontSize: float = 12
    lineHeight: float = 1.6
    chapterTitleSize: float = 24
    pageNumberSize: float = 10
    colors: DesignColorsAI = Field(default_factory=DesignColorsAI)
    reasoning: str = ""


class MarginsAI(BaseModel):
    top: float = 60
    bottom: float = 60
    inner: float = 70
    outer: float = 50


class PageLayoutAI(BaseModel):
    margins: MarginsAI = Field(default_factory=MarginsAI)
    chapterStartStyle: Literal["same-page", "new-page", "new-page-centered"] = "new-page-centered"
    pageNumberPosition: Literal["bottom-center", "bottom-outer", "top-outer", "none"] = "bottom-outer"
    headerStyle: Literal["none", "book-title", "chapter-title", "author-name"] = "chapter-title"
    dropCaps: bool = True
    ornaments: bool = False
    reasoning: str = ""


class ImagePlacementAI(BaseModel):
    position: Literal["chapter-start", "mid-chapter", "chapter-end"] = "chapter-start"
    textContext: str = ""
    suggestedPrompt: str
    importance: Literal["high", "medium", "low"] = "medium"
    reasoning: str = ""


class ChapterImagePlacementsAI(BaseModel):
    placements: list[ImagePlacementAI] = Field(default_factory=list)


class CoverTextAI(BaseModel):
    text: str = ""
    font: str = ""
    size: float = 18
    color: str = "#ffffff"
    position: Literal["top", "center", "bottom"] = "bottom"
    alignment: Literal["left", "center", "right"] = "center"


class FrontCoverAI(BaseModel):
    imagePrompt: str = ""
    imageUrl: str | None = None
    title: CoverTextAI = Field(default_factory=CoverTextAI)
    author: CoverTextAI = Field(default_factory=CoverTextAI)
    colorPalette: list[str] = Field(default_factory=list)


class BackCoverAI(BaseModel):
    imagePrompt: str = ""
    imageUrl: str | None = None
    synopsis: CoverTextAI = Field(default_factory=CoverTextAI)
    author: CoverTextAI = Field(default_factory=CoverTextAI)
    backgroundColor: str = "#1a1a2e"


class SpineAI(BaseModel):
    title: str = ""
    author: str = ""
    font: str = ""
    color: str = "#ffffff"
    backgroundColor: str = "#16213e"


class CoverDesignAI(BaseModel):
    front: FrontCoverAI = Field(default_factory=FrontCoverAI)
    back: BackCoverAI = Field(default_factory=BackCoverAI)
    spine: SpineAI = Field(default_factory=SpineAI)
    reasoning: str = ""


class ImagePromptAI(BaseModel):
    prompt: str


# --- manuscript analysis ---
class EnhancedPassageAI(BaseModel):
    enhanced: str
    explanation: str = ""


class ActAI(BaseModel):
    chapters: list[int] = Field(default_factory=list)
    percentage: float = Field(default=0, ge=0, le=100)
    completeness: float = Field(default=0, ge=0, le=100)
    elements: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class ThreeActAI(BaseModel):
    act1: ActAI = Field(default_factory=ActAI)
    act2: ActAI = Field(default_factory=ActAI)
    act3: ActAI = Field(default_factory=ActAI)


class PlotPointAI(BaseModel):
    chapter: int = Field(ge=0)
    description: str = ""


class PlotPointsAI(BaseModel):
    incitingIncident: PlotPointAI | None = None
    midpoint: PlotPointAI | None = None
    climax: PlotPointAI | None = None


class PlotStructureAI(BaseModel):
    threeActStructure: ThreeActAI = Field(default_factory=ThreeActAI)
    plotPoints: PlotPointsAI = Field(default_factory=PlotPointsAI)
    balance: Literal["balanced", "front-heavy", "back-heavy", "middle-heavy"] = "balanced"
    suggestions: list[str] = Field(default_factory=list)


class TensionMomentAI(BaseModel):
    position: float = Field(default=0.5, ge=0, le=1)
    type: Literal["conflict", "revelation", "resolution", "cliffhanger", "suspense"] = "conflict"
    description: str = ""


class ChapterTensionAI(BaseModel):
    chapterIndex: int = Field(ge=0)
    title: str = ""
    tensionLevel: float = Field(default=50, ge=0, le=100)
    type: Literal["rising", "falling", "peak", "valley", "stable"] = "stable"
    keyMoments: list[TensionMomentAI] = Field(default_factory=list)


class TensionAnalysisAI(BaseModel):
    chapters: list[ChapterTensionAI] = Field(default_factory=list)
    overallArc: Literal["classic", "episodic", "building", "flat", "irregular"] = "flat"
    suggestions: list[str] = Field(default_factory=list)


class TechniqueExampleAI(BaseModel):
    chapterIndex: int = Field(default=0, ge=0)
    excerpt: str = ""
    analysis: str = ""
    quality: Literal["excellent", "good", "needs-improvement"] = "good"


class TechniqueAI(BaseModel):
    score: float = Field(default=60, ge=0, le=100)
    trend: Literal["improving", "stable", "declining"] = "stable"
    examples: list[TechniqueExampleAI] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class TechniquesSetAI(BaseModel):
    tensionCreation: TechniqueAI = Field(default_factory=TechniqueAI)
    problemResolution: TechniqueAI = Field(default_factory=TechniqueAI)
    characterDevelopment: TechniqueAI = Field(default_factory=TechniqueAI)
    motifsThemes: TechniqueAI = Field(default_factory=TechniqueAI)
    dialogueQuality: TechniqueAI = Field(default_factory=TechniqueAI)
    pacing: TechniqueAI = Field(default_factory=TechniqueAI)


class TechniquesAnalysisAI(BaseModel):
    techniques: TechniquesSetAI = Field(default_factory=TechniquesSetAI)
    overallScore: float = Field(default=60, ge=0, le=100)
    improvements: list[str] = Field(default_factory=list)


class GuidanceSuggestionAI(BaseModel):
    text: str
    insertable: bool = False


class GuidanceAI(BaseModel):
    type: Literal["deviation", "structure", "tension", "character", "pacing", "theme"] = "structure"
    severity: Literal["info", "warning", "suggestion"] = "suggestion"
    message: str
    context: str | None = None
    suggestions: list[GuidanceSuggestionAI] = Field(default_factory=list)
    dismissible: bool = True


class GuidanceResponseAI(BaseModel):
    hasGuidance: bool = False
    guidance: GuidanceAI | None = None

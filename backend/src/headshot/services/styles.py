"""Built-in headshot style catalog."""

from dataclasses import dataclass

from headshot.services.exceptions import InvalidStyleError


@dataclass(frozen=True)
class Style:
    id: str
    name: str
    description: str
    prompt: str
    category: str  # "business", "professional" or "creative"


STYLE_CATEGORIES = ("all", "business", "professional", "creative")

STYLES: tuple[Style, ...] = (
    Style(
        id="business-suit",
        name="Business Suit",
        description="Professional business attire with formal suit and tie",
        prompt=(
            "Professional headshot of a person wearing a formal business suit, studio lighting, "
            "clean background, corporate portrait style, high quality, 4K"
        ),
        category="business",
    ),
    Style(
        id="business-casual",
        name="Business Casual",
        description="Smart casual business look with blazer",
        prompt=(
            "Professional headshot of a person wearing business casual attire, blazer, "
            "studio lighting, clean background, modern corporate portrait, high quality, 4K"
        ),
        category="business",
    ),
    Style(
        id="executive",
        name="Executive",
        description="Executive-level professional with premium background",
        prompt=(
            "Executive portrait of a person, premium business setting, elegant lighting, "
            "sophisticated background, executive presence, professional corporate photography, "
            "high quality, 4K"
        ),
        category="professional",
    ),
    Style(
        id="creative-casual",
        name="Creative Casual",
        description="Modern creative professional look",
        prompt=(
            "Modern headshot of a creative professional, stylish casual attire, natural lighting, "
            "contemporary background, creative industry look, high quality, 4K"
        ),
        category="creative",
    ),
    Style(
        id="tech-startup",
        name="Tech Startup",
        description="Modern tech startup founder style",
        prompt=(
            "Tech startup founder headshot, modern professional look, clean minimalist background, "
            "tech industry style, approachable yet professional, high quality, 4K"
        ),
        category="professional",
    ),
    Style(
        id="linkedin-professional",
        name="LinkedIn Pro",
        description="Optimized for LinkedIn profile pictures",
        prompt=(
            "LinkedIn professional headshot, perfect for business networking, friendly yet "
            "professional expression, studio lighting, optimal LinkedIn crop, high quality, 4K"
        ),
        category="business",
    ),
)


class StyleCatalog:
    """Read-only lookup over the available styles."""

    def __init__(self, styles: tuple[Style, ...] = STYLES):
        self._styles = {style.id: style for style in styles}

    def lookup(self, style_id: str) -> Style:
        """Return the style with this id.

        Raises:
            InvalidStyleError: If the id is not in the catalog
        """
        style = self._styles.get(style_id)
        if style is None:
            raise InvalidStyleError(style_id)
        return style

    def list_styles(self, category: str = "all") -> list[Style]:
        if category == "all":
            return list(self._styles.values())
        return [style for style in self._styles.values() if style.category == category]

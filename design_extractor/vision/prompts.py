"""Prompts for component identification."""

SUPPORTED_COMPONENT_TYPES = [
    "button",
    "card",
    "input",
    "text",
    "heading",
    "link",
    "navigation",
    "header",
    "footer",
    "sidebar",
    "modal",
    "dropdown",
    "menu",
    "tab",
    "accordion",
    "badge",
    "avatar",
    "icon",
    "image",
    "divider",
    "list",
    "table",
    "form",
    "checkbox",
    "radio",
    "toggle",
    "slider",
    "tooltip",
    "alert",
    "toast",
    "progress",
    "spinner",
    "breadcrumb",
    "pagination",
]

COMPONENT_IDENTIFICATION_SYSTEM_PROMPT = f"""You identify UI components in screenshots of web pages.

For every distinct component report:
- type: one of {", ".join(SUPPORTED_COMPONENT_TYPES)}, or another short lowercase tag
- name: a descriptive name such as "Primary CTA Button" or "Search Input"
- boundingBox: {{x, y, width, height}} in pixels from the top-left corner
- confidence: a number from 0.0 to 1.0

Prefer interactive elements, containers, typography and navigation.
Group words into text components and skip purely decorative elements.

Answer with a JSON array of component objects only."""

COMPONENT_IDENTIFICATION_USER_PROMPT = """Identify the distinct UI components in this screenshot.

Use exactly this shape:
[
  {
    "type": "button",
    "name": "Primary CTA Button",
    "boundingBox": { "x": 100, "y": 200, "width": 120, "height": 40 },
    "confidence": 0.95
  }
]

Avoid duplicates and focus on components worth extracting into a design system."""

"""
Tests for structural change detection.

Tests cover:
- Environment value changes are not structural
- Image, port and environment key changes are structural
- Formatting-only differences are not structural
- Fallback to text comparison when parsing fails

Run with: pytest backend/tests/test_change_detector.py -v
"""

BASE = """\
name: myapp
services:
  web:
    image: nginx:1.25
    environment:
      TOKEN: abc
      MODE: prod
    expose:
      - "80"
"""


class TestMasking:
    """Tests for mask_environment_values()."""

    def test_masks_mapping_and_list_forms(self):
        from dockflow.services.compose.change_detector import ENV_PLACEHOLDER, mask_environment_values

        node = {
            "services": {
                "a": {"environment": {"X": "1"}},
                "b": {"environment": ["Y=2", "BARE"]},
            }
        }

        masked = mask_environment_values(node)

        assert masked["services"]["a"]["environment"] == {"X": ENV_PLACEHOLDER}
        assert masked["services"]["b"]["environment"] == [f"Y={ENV_PLACEHOLDER}", "BARE"]


class TestHasStructuralChange:
    """Tests for has_structural_change()."""

    def test_identical_text(self):
        from dockflow.services.compose.change_detector import has_structural_change

        assert has_structural_change(BASE, BASE) is False

    def test_env_value_change_is_not_structural(self):
        from dockflow.services.compose.change_detector import has_structural_change

        changed = BASE.replace("TOKEN: abc", "TOKEN: xyz")

        assert has_structural_change(BASE, changed) is False

    def test_image_tag_change_is_structural(self):
        from dockflow.services.compose.change_detector import has_structural_change

        changed = BASE.replace("nginx:1.25", "nginx:1.26")

        assert has_structural_change(BASE, changed) is True

    def test_env_key_added_is_structural(self):
        from dockflow.services.compose.change_detector import has_structural_change

        changed = BASE.replace("      MODE: prod\n", "      MODE: prod\n      EXTRA: one\n")

        assert has_structural_change(BASE, changed) is True

    def test_key_order_and_quoting_are_ignored(self):
        from dockflow.services.compose.change_detector import has_structural_change

        reordered = """\
services:
  web:
    expose: ["80"]
    environment:
      MODE: prod
      TOKEN: "abc"
    image: 'nginx:1.25'
name: myapp
"""

        assert has_structural_change(BASE, reordered) is False

    def test_list_form_env_value_change(self):
        from dockflow.services.compose.change_detector import has_structural_change

        current = "services:\n  web:\n    environment:\n      - A=1\n"
        new = "services:\n  web:\n    environment:\n      - A=2\n"

        assert has_structural_change(current, new) is False

    def test_unparseable_text_falls_back_to_equality(self):
        """Malformed YAML compares as raw text."""
        from dockflow.services.compose.change_detector import has_structural_change

        broken = "services: [unclosed"

        assert has_structural_change(broken, BASE) is True
        assert has_structural_change(broken, broken) is False

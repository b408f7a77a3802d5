"""
Tests for seed contact loading.
"""
import pytest
from pathlib import Path

from config.seed_config import SeedContact, load_seed_contacts

pytestmark = pytest.mark.unit


class TestLoadSeedContacts:
    """Tests for load_seed_contacts."""

    def test_missing_file(self, tmp_path):
        assert load_seed_contacts(tmp_path / "nope.yaml") == []

    def test_loads_entries(self, tmp_path):
        path = tmp_path / "seeds.yaml"
        path.write_text(
            "seed_contacts:\n"
            "  - phone: '+6285712612218'\n"
            "    lid: '80444922015783'\n"
            "    name: Widji\n"
            "  - phone: 6281234567890\n"
            "    lid: 80444922015784\n"
        )

        seeds = load_seed_contacts(path)

        assert seeds == [
            SeedContact(phone="6285712612218", linked_id="80444922015783", display_name="Widji"),
            SeedContact(phone="6281234567890", linked_id="80444922015784", display_name=None),
        ]

    def test_skips_malformed_entries(self, tmp_path):
        path = tmp_path / "seeds.yaml"
        path.write_text(
            "seed_contacts:\n"
            "  - just a string\n"
            "  - phone: not-a-number\n"
            "    lid: '1'\n"
            "  - phone: '6285712612218'\n"
            "  - phone: '6285712612218'\n"
            "    lid: '80444922015783'\n"
        )

        seeds = load_seed_contacts(path)

        assert [s.linked_id for s in seeds] == ["80444922015783"]

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "seeds.yaml"
        path.write_text("seed_contacts: [unclosed\n")
        assert load_seed_contacts(path) == []

    def test_example_file_parses(self):
        example = Path(__file__).parent.parent / "config" / "seed_contacts.example.yaml"
        seeds = load_seed_contacts(example)
        assert seeds
        assert all(s.phone.isdigit() for s in seeds)

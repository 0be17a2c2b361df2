"""
Unit tests for the provider matcher and merge rules.
"""

import itertools
import pytest
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent))

from src.domain.models import CanonicalProvider, RawRecord
from src.match.provider_matcher import (
    ProviderMatcher, ACTION_CREATED, ACTION_MERGED, ACTION_SKIPPED, REASON_EMPTY_NAME,
)
from src.merge.merger import generate_provider_id, generate_specialty_id
from src.normalize.config import get_default_config, merge_configs

IMPORTED_AT = datetime(2025, 3, 1, tzinfo=timezone.utc)


def make_record(name, source_id, address=None, phone=None, email=None, specialties=()):
    return RawRecord(
        name=name,
        source_id=source_id,
        address=address,
        phone=phone,
        email=email,
        specialties=tuple(specialties),
        imported_at=IMPORTED_AT,
    )


def snapshot(index):
    """Comparable view of the canonical catalogue."""
    return sorted(
        (p.provider_id, p.display_name, p.name_key, p.address, p.address_key, p.phone, p.email,
         tuple(sorted(p.specialty_ids)), tuple(sorted(p.source_ids)))
        for p in index
    )


class TestProviderMatcher:
    """Test cases for matching raw records."""

    def setup_method(self):
        """Setup test fixtures."""
        self.config = merge_configs(get_default_config(), {
            "normalization": {"specialty": {"mapping_file": ""}},
        })
        self.matcher = ProviderMatcher(self.config)
        self.index = self.matcher.build_index()

    def test_variant_spellings_match_one_provider(self):
        """Test the two spellings of one clinic merge on the combined key."""
        records = [
            make_record("SC Clinica Sante SRL", "cas-b.xlsx#1:4",
                        address="Str. Exemplu 10, Sector 2"),
            make_record("Clinica Sante", "cas-b.xlsx#2:7",
                        address="Strada Exemplu nr. 10, Sect. 2", phone="0722 123 456"),
        ]
        report = self.matcher.match_batch(records, self.index)

        assert len(self.index) == 1
        assert [o.action for o in report.outcomes] == [ACTION_CREATED, ACTION_MERGED]
        assert report.outcomes[1].matched_on == "name_address"

        provider = next(iter(self.index))
        assert provider.source_ids == {"cas-b.xlsx#1:4", "cas-b.xlsx#2:7"}
        assert provider.display_name == "SC Clinica Sante SRL"
        assert provider.phone == "+40722123456"
        assert report.outcomes[1].filled_fields == ["phone"]

    def test_name_only_fallback(self):
        """Test a record without address merges by name."""
        self.matcher.match_batch([
            make_record("Clinica Sante", "a#1:1", address="Str. Exemplu 10"),
            make_record("CLINICA SANTE S.R.L.", "b#1:1"),
        ], self.index)
        assert len(self.index) == 1

    def test_merge_never_overwrites(self):
        """Test populated fields keep their first value."""
        self.matcher.match_batch([
            make_record("Medis", "a#1:1", address="Str. Exemplu 3", email="office@medis.ro"),
            make_record("Medis", "b#1:1", address="Str. Exemplu 3", email="alt@medis.ro",
                        phone="0722 123 456"),
        ], self.index)

        provider = next(iter(self.index))
        assert provider.email == "office@medis.ro"
        assert provider.phone == "+40722123456"

    def test_address_fill_reindexes(self):
        """Test a filled address makes the combined key available."""
        self.matcher.match_batch([
            make_record("Medis", "a#1:1"),
            make_record("Medis", "b#1:1", address="Str. Exemplu 3"),
        ], self.index)

        provider, matched_on = self.index.lookup("medis", "exemplu-3")
        assert provider is not None
        assert matched_on == "name_address"

    def test_skipped_records_do_not_abort_batch(self):
        """Test records without a usable name are skipped with a reason."""
        report = self.matcher.match_batch([
            make_record("", "a#1:1"),
            make_record("12345", "a#1:2"),
            make_record("Medis", "a#1:3"),
        ], self.index)

        assert report.counts == {ACTION_CREATED: 1, ACTION_MERGED: 0, ACTION_SKIPPED: 2}
        assert all(o.reason == REASON_EMPTY_NAME for o in report.skipped)
        assert len(self.index) == 1

    def test_specialty_linking(self):
        """Test specialty variants link to one canonical specialty."""
        report = self.matcher.match_batch([
            make_record("Medis", "a#1:1", specialties=["ORL", "Cardiologie"]),
            make_record("Medis", "b#1:1", specialties=["Otorinolaringologie", "cardiologie "]),
        ], self.index)

        provider = next(iter(self.index))
        assert provider.specialty_ids == {
            generate_specialty_id("otorinolaringologie"),
            generate_specialty_id("cardiologie"),
        }
        assert len(report.created_specialty_ids) == 2
        # Relinking is a no-op
        assert report.outcomes[1].linked_specialty_ids == []
        assert self.index.get_specialty("cardiologie").category == "clinical"

    def test_ids_are_deterministic(self):
        """Test provider and specialty IDs derive from the normalized name."""
        self.matcher.match_batch([make_record("SC Medis SRL", "a#1:1")], self.index)
        provider = next(iter(self.index))

        assert provider.provider_id == generate_provider_id("medis")
        assert provider.provider_id.startswith("PROV-")
        assert len(provider.provider_id) == len("PROV-") + 16
        assert generate_provider_id("medis", {provider.provider_id}) == provider.provider_id + "-2"
        assert generate_specialty_id("cardiologie").startswith("SPEC-")

    def test_order_independence(self):
        """Test every permutation of a batch yields the same catalogue."""
        records = [
            make_record("SC Clinica Sante SRL", "a#1:1", address="Str. Exemplu 10, Sector 2",
                        specialties=["ORL"]),
            make_record("Clinica Sante", "b#1:1", address="Strada Exemplu nr. 10, Sect. 2",
                        phone="0722 123 456"),
            make_record("Medis", "a#1:2", email="office@medis.ro", specialties=["Cardiologie"]),
            make_record("MEDIS S.R.L.", "b#1:2", specialties=["ginecologie"]),
        ]

        snapshots = set()
        for permutation in itertools.permutations(records):
            index = self.matcher.build_index()
            self.matcher.match_batch(permutation, index)
            snapshots.add(tuple(snapshot(index)))

        assert len(snapshots) == 1

    def test_seed_values_independent_of_arrival_order(self):
        """Test the display name and address come from the same record in either order."""
        first = make_record("SC Clinica Sante SRL", "cas-b.xlsx#1:4",
                            address="Str. Exemplu 10, Sector 2")
        second = make_record("Clinica Sante", "cas-b.xlsx#2:7",
                             address="Strada Exemplu nr. 10, Sect. 2")

        views = set()
        for batch in ([first, second], [second, first]):
            index = self.matcher.build_index()
            report = self.matcher.match_batch(batch, index)
            assert [o.source_id for o in report.outcomes] == ["cas-b.xlsx#1:4", "cas-b.xlsx#2:7"]
            provider = next(iter(index))
            views.add((provider.display_name, provider.address))

        assert views == {("SC Clinica Sante SRL", "Str. Exemplu 10, Sector 2")}

    def test_rerun_converges(self):
        """Test importing the same batch twice changes nothing the second time."""
        records = [
            make_record("Clinica Sante", "a#1:1", address="Str. Exemplu 10", specialties=["ORL"]),
            make_record("Medis", "a#1:2", phone="0722 123 456"),
        ]
        first = self.matcher.match_batch(records, self.index)
        before = snapshot(self.index)

        second = self.matcher.match_batch(records, self.index)

        assert len(first.created_provider_ids) == 2
        assert second.created_provider_ids == []
        assert second.updated_provider_ids == []
        assert second.created_specialty_ids == []
        assert snapshot(self.index) == before

    def test_updated_ids_for_existing_providers(self):
        """Test only pre-existing providers that changed are reported as updated."""
        existing = CanonicalProvider(provider_id="PROV-EXISTING", display_name="Medis SRL",
                                     source_ids={"old#1:1"})
        index = self.matcher.build_index([existing])
        assert existing.name_key == "medis"

        report = self.matcher.match_batch([
            make_record("Medis", "new#1:1", phone="0722 123 456"),
            make_record("Clinica Noua", "new#1:2"),
            make_record("Clinica Noua", "new#1:3"),
        ], index)

        assert report.updated_provider_ids == ["PROV-EXISTING"]
        assert len(report.created_provider_ids) == 1
        assert existing.phone == "+40722123456"

    def test_resolve_provider_id(self):
        """Test references resolve without creating providers."""
        self.matcher.match_batch([
            make_record("Clinica Sante", "a#1:1", address="Str. Exemplu 10, Sector 2"),
        ], self.index)
        provider = next(iter(self.index))

        assert self.matcher.resolve_provider_id(
            "S.C. Clinica Sante S.R.L.", "Strada Exemplu nr. 10, Sect. 2", self.index
        ) == provider.provider_id
        assert self.matcher.resolve_provider_id("Alta Clinica", None, self.index) is None
        assert len(self.index) == 1

    def test_match_report_dataframe(self):
        """Test the match log has one row per record."""
        report = self.matcher.match_batch([
            make_record("Medis", "a#1:1"),
            make_record("", "a#1:2"),
        ], self.index)

        log = report.to_dataframe()
        assert len(log) == 2
        assert list(log["action"]) == [ACTION_CREATED, ACTION_SKIPPED]


if __name__ == "__main__":
    pytest.main([__file__])

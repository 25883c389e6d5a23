"""Tests for identity-key duplicate detection and master election."""

import pytest

from refnorm.deduplication import DisjointSet, DuplicateAnalyzer, MasterScoreWeights, merged_count
from refnorm.models import DuplicateGroup, DuplicateItem, IdentityFields


class TypedRecord:
    """Record exposing identity_fields() instead of an attribute bag."""

    def __init__(self, record_id, name, tax_id="", secondary_code="", business_id=""):
        self.id = record_id
        self.name = name
        self.reference = ""
        self.code = ""
        self.source_database = ""
        self.quality_score = None
        self._identity = IdentityFields(tax_id=tax_id, secondary_code=secondary_code, business_id=business_id)

    def identity_fields(self):
        return self._identity


@pytest.fixture
def analyzer():
    return DuplicateAnalyzer()


class TestGrouping:
    """Grouping by tax key and business ID."""

    def test_empty_input(self, analyzer):
        """Test that no records produce no groups."""
        assert analyzer.analyze([]) == []

    def test_transitive_chain_is_merged(self, analyzer, counterparties):
        """Test that overlapping tax and business groups collapse into one cluster."""
        groups = analyzer.analyze(counterparties)

        assert len(groups) == 1
        group = groups[0]
        assert group.member_ids == [1, 2, 3]
        assert group.key == "7701234567|123456789012"
        assert group.key_type == "inn_kpp+bin"
        assert group.confidence == 1.0

    def test_no_singleton_groups(self, analyzer, counterparties):
        """Test that a record sharing no key appears in no group."""
        groups = analyzer.analyze(counterparties)
        assert all(4 not in group.member_ids for group in groups)
        assert all(len(group.items) >= 2 for group in groups)

    def test_tax_key_includes_secondary_code(self, analyzer, record_factory):
        """Test that the same tax ID with different secondary codes are different entities."""
        records = [
            record_factory(1, ИНН="7701234567", КПП="770101001"),
            record_factory(2, ИНН="7701234567", КПП="770101001"),
            record_factory(3, ИНН="7701234567", КПП="770201001"),
        ]

        groups = analyzer.analyze(records)

        assert len(groups) == 1
        assert groups[0].key == "7701234567/770101001"
        assert groups[0].key_type == "inn_kpp"
        assert groups[0].member_ids == [1, 2]

    def test_business_id_only_group(self, analyzer, record_factory):
        """Test grouping by business ID alone."""
        records = [
            record_factory(1, БИН="123456789012"),
            record_factory(2, БИН="123456789012"),
        ]

        groups = analyzer.analyze(records)

        assert len(groups) == 1
        assert groups[0].key == "123456789012"
        assert groups[0].key_type == "bin"

    def test_typed_records_are_grouped(self, analyzer):
        """Test that records exposing identity_fields() are grouped without attributes."""
        records = [
            TypedRecord(1, "Альфа", "123456789", "001"),
            TypedRecord(2, "Альфа-Сервис", "123456789", "001"),
        ]

        groups = analyzer.analyze(records)

        assert len(groups) == 1
        assert groups[0].key == "123456789/001"
        assert groups[0].member_ids == [1, 2]

    def test_shared_tax_key_with_different_business_ids(self, analyzer):
        """Test that differing business IDs do not split a shared tax key."""
        records = [
            TypedRecord(1, "Альфа", "123456789", "001", business_id="111111111111"),
            TypedRecord(2, "Альфа", "123456789", "001", business_id="222222222222"),
        ]

        groups = analyzer.analyze(records)

        assert len(groups) == 1
        assert groups[0].key_type == "inn_kpp"
        assert groups[0].confidence == 1.0
        assert groups[0].member_ids == [1, 2]

    def test_records_without_identity_are_ignored(self, analyzer, record_factory):
        """Test that an address alone never groups records."""
        address = "г. Москва, ул. Тверская, д. 1"
        records = [record_factory(1, Адрес=address), record_factory(2, Адрес=address)]
        assert analyzer.analyze(records) == []

    def test_repeated_record_id_counted_once(self, analyzer, record_factory):
        """Test that the same record ID appearing twice does not form a group with itself."""
        records = [record_factory(1, ИНН="7701234567"), record_factory(1, ИНН="7701234567")]
        assert analyzer.analyze(records) == []

    def test_groups_ordered_by_first_member(self, analyzer, record_factory):
        """Test that group order follows input position of the first member."""
        records = [
            record_factory(1, БИН="111111111111"),
            record_factory(2, ИНН="7701234567"),
            record_factory(3, БИН="111111111111"),
            record_factory(4, ИНН="7701234567"),
        ]

        groups = analyzer.analyze(records)

        assert [group.member_ids for group in groups] == [[1, 3], [2, 4]]

    def test_records_are_not_mutated(self, analyzer, counterparties):
        """Test that analysis leaves the input untouched."""
        before = [dict(record.attributes) for record in counterparties]
        analyzer.analyze(counterparties)
        assert [dict(record.attributes) for record in counterparties] == before


class TestDeterminism:
    """Results do not depend on overlap discovery order."""

    def test_repeated_runs_are_identical(self, analyzer, counterparties):
        """Test that two runs over the same input produce identical groups."""
        first = [group.to_dict() for group in analyzer.analyze(counterparties)]
        second = [group.to_dict() for group in analyzer.analyze(counterparties)]
        assert first == second

    def test_membership_independent_of_input_order(self, analyzer, counterparties):
        """Test that reversing the input yields the same clusters."""
        forward = {frozenset(g.member_ids) for g in analyzer.analyze(counterparties)}
        backward = {frozenset(g.member_ids) for g in analyzer.analyze(list(reversed(counterparties)))}
        assert forward == backward == {frozenset({1, 2, 3})}

    def test_chain_joined_through_middle_record(self, analyzer, record_factory):
        """Test a longer chain where each link uses a different key."""
        records = [
            record_factory(1, ИНН="7701234567"),
            record_factory(2, ИНН="7701234567", БИН="111111111111"),
            record_factory(3, БИН="111111111111", ИНН="7709876543"),
            record_factory(4, ИНН="7709876543"),
        ]

        groups = analyzer.analyze(records)

        assert len(groups) == 1
        assert groups[0].member_ids == [1, 2, 3, 4]
        assert groups[0].key == "7701234567|7709876543|111111111111"


class TestMasterSelection:
    """Master-record scoring."""

    def test_chain_master(self, analyzer, counterparties):
        """Test that ties go to the earliest member."""
        group = analyzer.analyze(counterparties)[0]
        # Records 1 and 3 both score 60
        assert group.master_item.id == 1

    def test_legal_address_adds_twenty(self, analyzer):
        """Test the legal-address bonus."""
        plain = DuplicateItem(id=1, name="Альфа", tax_id="7701234567")
        with_address = DuplicateItem(
            id=2, name="Альфа", tax_id="7701234567", legal_address="г. Москва, ул. Тверская, д. 1"
        )

        difference = analyzer.calculate_master_score(with_address) - analyzer.calculate_master_score(plain)

        assert difference == pytest.approx(20.0)
        assert analyzer.select_master([plain, with_address]).id == 2

    def test_score_components(self, analyzer):
        """Test every scoring component together."""
        item = DuplicateItem(
            id=1,
            name="ООО Ромашка Плюс",
            tax_id="7701234567",
            secondary_code="770101001",
            legal_address="г. Москва, ул. Тверская, д. 1",
            quality_score=1.0,
        )
        # identity 30 + secondary 10 + address 20 + long name 10 + legal form 10 + quality 20
        assert analyzer.calculate_master_score(item) == pytest.approx(100.0)

    def test_default_quality_is_half(self, analyzer, record_factory):
        """Test that a missing quality score counts as 0.5."""
        groups = analyzer.analyze([
            record_factory(1, "Бета", ИНН="7701234567"),
            record_factory(2, "Бета", ИНН="7701234567", quality_score=0.9),
        ])
        assert groups[0].items[0].quality_score == 0.5
        assert groups[0].master_item.id == 2

    def test_custom_weights(self):
        """Test that scoring weights are configurable."""
        analyzer = DuplicateAnalyzer(weights=MasterScoreWeights(legal_address=0.0, quality_multiplier=0.0))
        item = DuplicateItem(id=1, name="Гамма", tax_id="7701234567", legal_address="г. Москва, ул. Тверская, д. 1")
        assert analyzer.calculate_master_score(item) == pytest.approx(30.0)

    def test_select_master_empty(self, analyzer):
        """Test that an empty list has no master."""
        assert analyzer.select_master([]) is None


class TestFindDuplicatesFor:
    """Single-record duplicate lookup."""

    def test_middle_of_chain(self, analyzer, counterparties):
        """Test that a record matching on both keys finds both neighbours."""
        duplicates = analyzer.find_duplicates_for(counterparties[1], counterparties)
        assert [item.id for item in duplicates] == [1, 3]

    def test_excludes_self_and_non_matches(self, analyzer, counterparties):
        """Test that only direct matches are returned."""
        duplicates = analyzer.find_duplicates_for(counterparties[0], counterparties)
        assert [item.id for item in duplicates] == [2]

    def test_no_identity(self, analyzer, record_factory, counterparties):
        """Test that a record without identity has no duplicates."""
        assert analyzer.find_duplicates_for(record_factory(99), counterparties) == []

    def test_secondary_code_mismatch(self, analyzer, record_factory):
        """Test that differing secondary codes do not match, but a missing one does."""
        target = record_factory(1, ИНН="7701234567", КПП="770101001")
        records = [
            target,
            record_factory(2, ИНН="7701234567", КПП="770201001"),
            record_factory(3, ИНН="7701234567"),
        ]

        duplicates = analyzer.find_duplicates_for(target, records)

        assert [item.id for item in duplicates] == [3]


class TestSummary:
    """Group counts by key type."""

    def test_each_group_counted_once(self, analyzer, counterparties):
        """Test that a merged group counts under the combined key type only."""
        summary = DuplicateAnalyzer.summarize(analyzer.analyze(counterparties))
        assert summary == {
            "total_groups": 1,
            "total_duplicates": 3,
            "duplicates_by_inn_kpp": 0,
            "duplicates_by_bin": 0,
            "duplicates_by_both": 1,
        }

    def test_separate_key_types(self, analyzer, record_factory):
        """Test counting of tax-only and business-only groups."""
        records = [
            record_factory(1, ИНН="7701234567"),
            record_factory(2, ИНН="7701234567"),
            record_factory(3, ИНН="7709876543"),
            record_factory(4, ИНН="7709876543"),
            record_factory(5, БИН="111111111111"),
            record_factory(6, БИН="111111111111"),
        ]

        summary = analyzer.summarize(analyzer.analyze(records))

        assert summary["total_groups"] == 3
        assert summary["total_duplicates"] == 6
        assert summary["duplicates_by_inn_kpp"] == 2
        assert summary["duplicates_by_bin"] == 1
        assert summary["duplicates_by_both"] == 0

    def test_merged_count(self, analyzer, counterparties):
        """Test that a group of three collapses two records."""
        group = analyzer.analyze(counterparties)[0]
        assert merged_count(group) == 2
        assert merged_count(DuplicateGroup(key="x", key_type="bin")) == 0


class TestDisjointSet:
    """Union-find behaviour."""

    def test_union_and_groups(self):
        """Test that unions produce components in insertion order."""
        ds = DisjointSet([1, 2, 3, 4, 5])
        ds.union(1, 2)
        ds.union(4, 5)
        ds.union(2, 5)

        assert ds.groups() == [[1, 2, 4, 5], [3]]
        assert ds.find(1) == ds.find(5)
        assert ds.find(3) != ds.find(1)

    def test_union_all_and_membership(self):
        """Test union_all adds unseen elements."""
        ds = DisjointSet()
        ds.union_all([7, 8, 9])

        assert len(ds) == 3
        assert 8 in ds
        assert 10 not in ds
        assert ds.find(7) == ds.find(9)

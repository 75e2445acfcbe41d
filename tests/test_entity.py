"""
Tests for entity metadata and BaseModel.
"""

import pytest

from scylladb_orm import (
    BaseModel,
    ColumnType,
    EntityBuilder,
    OrmConfigurationError,
    OrmValidationError,
)


@pytest.mark.unit
class TestEntityBuilder:
    """Descriptor construction."""

    def test_descriptor_contents(self, employee_model):
        descriptor = employee_model.descriptor()

        assert descriptor.get_table_name() == "employees"
        assert descriptor.column_names == ["id", "name", "age", "active", "hired_at"]
        assert [pk.name for pk in descriptor.get_primary_keys()] == ["id"]
        assert [(idx.name, idx.column) for idx in descriptor.get_indexes()] == [("employees_name_idx", "name")]

    def test_primary_key_is_also_a_column(self, employee_model):
        descriptor = employee_model.descriptor()

        for pk in descriptor.get_primary_keys():
            assert descriptor.column(pk.name) is not None
            assert descriptor.column(pk.name).type == pk.type

    def test_partition_and_clustering_keys(self):
        descriptor = (
            EntityBuilder("events")
            .primary_key("tenant", ColumnType.TEXT, partition_key=True)
            .primary_key("event_id", ColumnType.UUID, clustering_key=True)
            .column("payload", ColumnType.BLOB)
            .build()
        )

        assert [pk.name for pk in descriptor.partition_keys] == ["tenant"]
        assert [pk.name for pk in descriptor.clustering_keys] == ["event_id"]

    def test_table_set_after_construction(self):
        descriptor = EntityBuilder().table("things").primary_key("id", "INT").build()

        assert descriptor.get_table_name() == "things"
        assert descriptor.column("id").type is ColumnType.INT

    def test_missing_table_name(self):
        with pytest.raises(OrmConfigurationError):
            EntityBuilder().column("id", ColumnType.INT).build()

    def test_duplicate_column(self):
        builder = EntityBuilder("t").primary_key("id", ColumnType.INT)

        with pytest.raises(OrmConfigurationError):
            builder.column("id", ColumnType.INT)

    def test_empty_column_name(self):
        with pytest.raises(OrmConfigurationError):
            EntityBuilder("t").column("", ColumnType.TEXT)

    def test_index_on_undeclared_column(self):
        with pytest.raises(OrmConfigurationError):
            EntityBuilder("t").primary_key("id", ColumnType.INT).index("t_idx", "email")

    @pytest.mark.parametrize("column_type", [ColumnType.TIMESTAMP, ColumnType.BIGINT, ColumnType.BLOB])
    def test_primary_key_type_restriction(self, column_type):
        with pytest.raises(OrmConfigurationError):
            EntityBuilder("t").primary_key("id", column_type)

    def test_unknown_column_type(self):
        with pytest.raises(ValueError):
            EntityBuilder("t").column("x", "JSONB")


@pytest.mark.unit
class TestBaseModel:
    """Instantiation and defaults."""

    def test_explicit_values(self, employee_model):
        employee = employee_model(id=1, name="Alice", active=False)

        assert employee.id == 1
        assert employee.name == "Alice"
        assert employee.active is False

    def test_defaults_applied(self, employee_model):
        employee = employee_model(id=1)

        assert employee.active is True
        assert employee.hired_at is not None
        assert employee.hired_at.tzinfo is not None
        assert employee.age is None

    def test_callable_default_invoked_per_instance(self):
        calls = []

        def next_value():
            calls.append(1)
            return len(calls)

        class Counter(BaseModel):
            __descriptor__ = (
                EntityBuilder("counters")
                .primary_key("id", ColumnType.INT, default=next_value)
                .build()
            )

        assert Counter().id == 1
        assert Counter().id == 2
        assert Counter(id=10).id == 10
        assert len(calls) == 2

    def test_unknown_column(self, employee_model):
        with pytest.raises(OrmValidationError):
            employee_model(id=1, email="a@example.com")

    def test_missing_descriptor(self):
        class Bare(BaseModel):
            pass

        with pytest.raises(OrmConfigurationError):
            Bare()

    def test_classmethods(self, employee_model):
        assert employee_model.get_table_name() == "employees"
        assert len(employee_model.get_columns()) == 5
        assert len(employee_model.get_primary_keys()) == 1
        assert len(employee_model.get_indexes()) == 1

    def test_equality_and_repr(self, employee_model, employee_row):
        first = employee_model(**employee_row)
        second = employee_model(**employee_row)

        assert first == second
        assert first != employee_model(**{**employee_row, "age": 43})
        assert repr(first).startswith("Employee(id=1, name='Alice'")

"""
Integration tests for Dataset against the in-memory datastore.

These tests exercise the whole client stack (keys, codec, executors,
transactions) over a functional datastore without a network.
"""

import pytest

from sdk.datastore_sdk import (
    Dataset,
    Entity,
    InMemoryTransport,
    InvalidArgumentError,
    Key,
    RemoteRejectedError,
    TransactionState,
    TransportError,
)


@pytest.fixture
def transport():
    return InMemoryTransport()


@pytest.fixture
def dataset(transport):
    return Dataset("test-project", transport)


async def seed(dataset, kind, count, **extra):
    entities = [Entity(dataset.key(kind), dict(n=i, **extra)) for i in range(count)]
    await dataset.save(entities)
    return entities


class TestDirectWrites:
    """Tests for immediate writes."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, dataset, transport):
        company = Entity(dataset.key("Company"), {"name": "Acme", "rating": 10})

        [key] = await dataset.save(company)

        assert key.is_complete
        assert company.key == key
        assert transport.entity_count() == 1
        assert await dataset.get(key) == [company]

    @pytest.mark.asyncio
    async def test_get_missing_is_omitted(self, dataset):
        [key] = await dataset.save(Entity(dataset.key("Company", "acme")))

        found = await dataset.get([dataset.key("Company", "missing"), key])

        assert [e.key for e in found] == [key]

    @pytest.mark.asyncio
    async def test_insert_existing_is_rejected(self, dataset):
        entity = Entity(dataset.key("Company", "acme"))
        await dataset.insert(entity)

        with pytest.raises(RemoteRejectedError) as exc_info:
            await dataset.insert(entity)

        assert exc_info.value.status == "ALREADY_EXISTS"

    @pytest.mark.asyncio
    async def test_update_missing_is_rejected(self, dataset):
        with pytest.raises(RemoteRejectedError) as exc_info:
            await dataset.update(Entity(dataset.key("Company", "ghost")))

        assert exc_info.value.status == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_empty_save_sends_nothing(self, dataset, transport):
        with pytest.raises(InvalidArgumentError):
            await dataset.save([])

        assert transport.calls_to("commit") == []

    @pytest.mark.asyncio
    async def test_delete(self, dataset, transport):
        [key] = await dataset.save(Entity(dataset.key("Company")))

        await dataset.delete(key)

        assert await dataset.get(key) == []
        assert transport.entity_count() == 0

    @pytest.mark.asyncio
    async def test_child_keys_keep_parent(self, dataset):
        parent = dataset.key("Company", "acme")

        [key] = await dataset.save(Entity(parent.child("Employee"), {"name": "bob"}))

        assert key.parent == parent
        assert key.kind == "Employee"

    @pytest.mark.asyncio
    async def test_deferred_lookup(self):
        transport = InMemoryTransport(max_lookup_batch=2)
        dataset = Dataset("test-project", transport)
        keys = await dataset.save([Entity(dataset.key("Company", i)) for i in range(1, 6)])

        found = await dataset.get(list(reversed(keys)))

        assert [e.key for e in found] == list(reversed(keys))
        assert len(transport.calls_to("lookup")) == 3

    @pytest.mark.asyncio
    async def test_allocate_ids(self, dataset):
        keys = await dataset.allocate_ids(dataset.key("Company", "acme", "Employee"), 5)

        assert len(set(keys)) == 5
        assert all(k.parent == dataset.key("Company", "acme") for k in keys)


class TestTransactions:
    """Tests for explicit transactions."""

    @pytest.mark.asyncio
    async def test_writes_visible_only_after_commit(self, dataset, transport):
        async with dataset.transaction() as txn:
            a = Entity(dataset.key("Company"), {"name": "A"})
            b = Entity(dataset.key("Company"), {"name": "B"})
            await txn.save([a, b])
            assert transport.entity_count() == 0
            assert not a.key.is_complete

        assert transport.entity_count() == 2
        assert a.key.id < b.key.id
        assert transport.get_entity(a.key) == a
        assert len(transport.calls_to("commit")) == 1

    @pytest.mark.asyncio
    async def test_rollback_discards_writes(self, dataset, transport):
        with pytest.raises(RuntimeError):
            async with dataset.transaction() as txn:
                await txn.save(Entity(dataset.key("Company", 1)))
                raise RuntimeError("abort")

        assert transport.entity_count() == 0
        assert transport.active_transactions == []

    @pytest.mark.asyncio
    async def test_read_modify_write(self, dataset):
        [key] = await dataset.save(Entity(dataset.key("Account", "alice"), {"balance": 100}))

        async def withdraw(txn):
            [account] = await txn.get(key)
            account["balance"] -= 30
            await txn.save(account)
            return account["balance"]

        assert await dataset.run_in_transaction(withdraw) == 70
        [account] = await dataset.get(key)
        assert account["balance"] == 70

    @pytest.mark.asyncio
    async def test_conflicting_write_aborts(self, dataset, transport):
        """A concurrent change to an entity read in the transaction aborts the commit."""
        [key] = await dataset.save(Entity(dataset.key("Account", "alice"), {"balance": 100}))

        with pytest.raises(RemoteRejectedError) as exc_info:
            async with dataset.transaction() as txn:
                [account] = await txn.get(key)
                transport.put_entity(Entity(key, {"balance": 0}))
                account["balance"] += 50
                await txn.save(account)

        assert exc_info.value.status == "ABORTED"
        assert txn.state is TransactionState.ROLLED_BACK
        assert transport.get_entity(key)["balance"] == 0

    @pytest.mark.asyncio
    async def test_failed_commit_can_be_retried(self, dataset, transport):
        txn = dataset.create_transaction()
        await txn.begin()
        entity = Entity(dataset.key("Company"))
        await txn.save(entity)
        transport.fail_next("commit", TransportError("connection reset", method="commit"))

        with pytest.raises(TransportError):
            await txn.commit()
        assert txn.is_open

        await txn.commit()

        assert entity.key.is_complete
        assert transport.get_entity(entity.key) == entity

    @pytest.mark.asyncio
    async def test_missing_reads_leave_no_versions(self, dataset, transport):
        """Looking up absent keys in a transaction stores nothing."""
        missing = dataset.key("Company", "ghost")

        async with dataset.transaction() as txn:
            assert await txn.get(missing) == []

        assert missing not in transport._versions

    @pytest.mark.asyncio
    async def test_independent_transactions(self, dataset, transport):
        first = dataset.create_transaction()
        second = dataset.create_transaction()
        await first.begin()
        await second.begin()

        await first.save(Entity(dataset.key("A", 1)))
        await second.save(Entity(dataset.key("B", 1)))
        await second.rollback()
        await first.commit()

        assert transport.get_entity(Key.from_path("A", 1)) is not None
        assert transport.get_entity(Key.from_path("B", 1)) is None


class TestQueries:
    """Tests for queries and cursor paging."""

    @pytest.mark.asyncio
    async def test_filter_and_order(self, dataset):
        await seed(dataset, "Company", 6)

        query = dataset.create_query("Company").filter("n >=", 2).order("-n")
        entities, cursor = await dataset.run_query(query)

        assert [e["n"] for e in entities] == [5, 4, 3, 2]
        assert cursor is None

    @pytest.mark.asyncio
    async def test_cursor_paging(self):
        transport = InMemoryTransport(batch_size=2)
        dataset = Dataset("test-project", transport)
        await seed(dataset, "Company", 5)
        query = dataset.create_query("Company").order("n")

        entities, cursor = await dataset.run_query(query)
        assert [e["n"] for e in entities] == [0, 1]
        assert cursor is not None

        entities, cursor = await dataset.run_query(query, cursor)
        assert [e["n"] for e in entities] == [2, 3]

    @pytest.mark.asyncio
    async def test_iter_query_with_limit(self, dataset, transport):
        await seed(dataset, "Company", 5)

        results = [e async for e in dataset.iter_query(dataset.create_query("Company").limit(2))]

        assert len(results) == 2
        assert len(transport.calls_to("runQuery")) == 1

    @pytest.mark.asyncio
    async def test_iter_query_limit_spans_batches(self):
        transport = InMemoryTransport(batch_size=2)
        dataset = Dataset("test-project", transport)
        await seed(dataset, "Company", 5)

        query = dataset.create_query("Company").order("n").limit(3)
        values = [e["n"] async for e in dataset.iter_query(query)]

        assert values == [0, 1, 2]
        assert len(transport.calls_to("runQuery")) == 2

    @pytest.mark.asyncio
    async def test_iter_query_with_offset(self):
        transport = InMemoryTransport(batch_size=2)
        dataset = Dataset("test-project", transport)
        await seed(dataset, "Company", 7)

        query = dataset.create_query("Company").order("n").offset(1)
        values = [e["n"] async for e in dataset.iter_query(query)]

        assert values == [1, 2, 3, 4, 5, 6]

    @pytest.mark.asyncio
    async def test_ancestor_query(self, dataset):
        acme = dataset.key("Company", "acme")
        other = dataset.key("Company", "other")
        await dataset.save(
            [
                Entity(acme.child("Employee"), {"name": "a"}),
                Entity(acme.child("Employee"), {"name": "b"}),
                Entity(other.child("Employee"), {"name": "c"}),
            ]
        )

        entities, _ = await dataset.run_query(
            dataset.create_query("Employee").has_ancestor(acme).order("name")
        )

        assert [e["name"] for e in entities] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_namespaces_are_isolated(self, transport):
        ds_a = Dataset("test-project", transport, namespace="a")
        ds_b = Dataset("test-project", transport, namespace="b")
        await ds_a.save(Entity(ds_a.key("Company", 1)))

        entities, _ = await ds_b.run_query(ds_b.create_query("Company"))

        assert entities == []
        assert await ds_b.get(ds_b.key("Company", 1)) == []

    @pytest.mark.asyncio
    async def test_projection(self, dataset):
        await dataset.save(Entity(dataset.key("Company", 1), {"name": "Acme", "rating": 3}))

        entities, _ = await dataset.run_query(dataset.create_query("Company").select("name"))

        assert entities[0].properties == {"name": "Acme"}

    @pytest.mark.asyncio
    async def test_closed_transport(self, dataset):
        await dataset.close()

        with pytest.raises(TransportError):
            await dataset.get(dataset.key("Company", 1))

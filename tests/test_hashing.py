"""Unit tests for hashing and identifier utilities."""

from health_fitness_ledger.utils.hashing import compute_documents_digest, generate_object_id


def test_object_id_starts_with_creation_time() -> None:
    """Test the timestamp prefix of generated ids."""
    object_id = generate_object_id(now=1709280000.7)

    if len(object_id) != 24:
        raise AssertionError(f"Expected 24 hex characters, got {object_id}")
    if int(object_id[:8], 16) != 1709280000:
        raise AssertionError(f"Expected the creation second as prefix, got {object_id[:8]}")


def test_object_ids_sort_by_creation_time() -> None:
    """Test that later ids sort after earlier ones."""
    earlier = generate_object_id(now=1709280000)
    later = generate_object_id(now=1709280001)
    same_second = [generate_object_id(now=1709280001) for _ in range(5)]

    if not earlier < later:
        raise AssertionError(f"Expected {earlier} < {later}")
    if len(set(same_second)) != 5:
        raise AssertionError("Expected unique ids within one second")


def test_documents_digest_ignores_order() -> None:
    """Test that the digest does not depend on document order."""
    documents = [{"_id": "a", "pain_level": 3}, {"_id": "b", "tags": ["x"]}]

    forward = compute_documents_digest(documents)
    backward = compute_documents_digest(list(reversed(documents)))
    changed = compute_documents_digest([{"_id": "a", "pain_level": 4}, documents[1]])

    if forward != backward:
        raise AssertionError("Expected the same digest in either order")
    if forward == changed:
        raise AssertionError("Expected a different digest for changed content")

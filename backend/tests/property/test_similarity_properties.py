"""
Property-based tests for the similarity engine.

Red-zone results must not depend on the order records come back from
storage, and each unordered pair is reported at most once.
"""
from hypothesis import given, strategies as st

from app.core.services.similarity import SimilarityEngine, cosine_similarity, similarity_pct
from app.models.store.inmemory_store import InMemoryRecordStore

from conftest import make_record


# =============================================================================
# Custom Strategies
# =============================================================================

component = st.integers(min_value=-10, max_value=10).map(lambda x: x / 10)
vector3 = st.lists(component, min_size=3, max_size=3)

record_vectors = st.lists(vector3, min_size=2, max_size=12)


class _ShuffledStore(InMemoryRecordStore):
    """Returns embedded records in a caller-chosen order."""

    def __init__(self, order):
        super().__init__()
        self.order = order

    def list_embedded(self, *args, **kwargs):
        rows = super().list_embedded(*args, **kwargs)
        return [rows[i] for i in self.order if i < len(rows)]


def _report(vectors, order, threshold):
    store = _ShuffledStore(order)
    store.create_many([make_record(f"r{i:02d}", v) for i, v in enumerate(vectors)])
    return SimilarityEngine(store).find_red_zone_pairs("p1", threshold=threshold)


# =============================================================================
# Property Tests
# =============================================================================

class TestRedZoneSymmetry:
    @given(data=st.data(), vectors=record_vectors, threshold=st.integers(min_value=0, max_value=100))
    def test_order_independent_and_unique(self, data, vectors, threshold):
        """
        Property: any storage order yields the same pairs, each pair once,
        left id always smaller than right id, and all at or above threshold.
        """
        base = list(range(len(vectors)))
        shuffled = data.draw(st.permutations(base))

        a = _report(vectors, base, threshold)
        b = _report(vectors, shuffled, threshold)

        key = lambda r: [(p.left.id, p.right.id, p.similarity_pct) for p in r.pairs]
        assert key(a) == key(b)

        ids = [(p.left.id, p.right.id) for p in a.pairs]
        assert len(ids) == len(set(ids))
        assert all(left < right for left, right in ids)
        assert all(p.similarity_pct >= threshold for p in a.pairs)

    @given(u=vector3, v=vector3)
    def test_similarity_is_symmetric(self, u, v):
        """Property: sim(A, B) == sim(B, A) after rounding."""
        assert similarity_pct(cosine_similarity(u, v)) == similarity_pct(cosine_similarity(v, u))

    @given(score=st.floats(min_value=-2.0, max_value=2.0, allow_nan=False))
    def test_percentage_bounds(self, score):
        assert 0 <= similarity_pct(score) <= 100

    @given(vectors=record_vectors)
    def test_red_zone_sorted_descending(self, vectors):
        report = _report(vectors, list(range(len(vectors))), 0)
        pcts = [p.similarity_pct for p in report.pairs]
        assert pcts == sorted(pcts, reverse=True)
        n = report.total_records
        assert report.red_zone_count == n * (n - 1) // 2

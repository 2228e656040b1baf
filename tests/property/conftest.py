"""Hypothesis strategies for property-based testing."""

from hypothesis import strategies as st

from reelforge.models.provider import LipsyncStatus


@st.composite
def generate_duration_and_chunk(draw):
    """Random song duration D and chunk length C."""
    chunk = draw(st.floats(min_value=0.5, max_value=20.0, allow_nan=False))
    duration = draw(st.floats(min_value=0.1, max_value=600.0, allow_nan=False))
    return round(duration, 3), round(chunk, 3)


@st.composite
def generate_segment_outcome(draw):
    """How one segment's provider operations end."""
    return {
        "generation_ok": draw(st.booleans()),
        "lipsync": draw(
            st.sampled_from(
                [LipsyncStatus.COMPLETED, LipsyncStatus.FAILED, LipsyncStatus.REJECTED]
            )
        ),
    }


@st.composite
def generate_finalize_ops(draw, total=8):
    """Sequence of (mark|unmark, index) counter operations."""
    return draw(
        st.lists(
            st.tuples(st.sampled_from(["mark", "unmark"]), st.integers(0, total - 1)),
            max_size=60,
        )
    )

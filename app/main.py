"""
Streamlit Help Centre for the QA Resolution Engine

A small help-centre page that sends questions through the resolver and
shows where each answer came from.

DESIGN PRINCIPLES:
1. The answer is always shown, even when degraded
2. The source of every answer is visible (FAQ, cache, AI, fallback)
3. Help topics can be browsed without asking anything
4. Operators can see budget, cache and error state on one page
"""

import asyncio
import html

import streamlit as st

from qa_engine.config import validate_all_settings
from qa_engine.models.resolution import AnswerSource, QAResponse
from qa_engine.orchestrator import QAResolver, create_app_components
from qa_engine.services.connectivity import ConnectivityMonitor


# Page configuration
st.set_page_config(
    page_title="ClariFi Help Centre",
    page_icon="💬",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .answer-box {
        padding: 20px;
        background-color: #d4edda;
        border-radius: 10px;
        border-left: 5px solid #28a745;
        margin: 10px 0;
    }
    .fallback-box {
        padding: 20px;
        background-color: #fff3cd;
        border-radius: 10px;
        border-left: 5px solid #ffc107;
        margin: 10px 0;
    }
</style>
""", unsafe_allow_html=True)

SOURCE_LABELS = {
    AnswerSource.FAQ: "📚 Help centre article",
    AnswerSource.CACHE: "⚡ Saved answer",
    AnswerSource.LLM: "🤖 AI assistant",
    AnswerSource.FALLBACK: "⚠️ Limited answer",
}


def run_async(resolver: QAResolver, coro):
    """
    Run a coroutine for Streamlit, then let background work finish.

    Each call uses a fresh event loop, so persistence and analytics tasks
    must complete before the loop closes.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(coro)
        loop.run_until_complete(resolver.background.drain(timeout=10))
        return result
    finally:
        loop.close()


@st.cache_resource
def get_components() -> tuple[QAResolver, ConnectivityMonitor]:
    """Get or create the resolver (cached)."""
    connectivity = ConnectivityMonitor()
    try:
        resolver, _ = create_app_components(use_storage=True, connectivity=connectivity)
    except Exception as e:
        st.error(f"Failed to initialize: {e}")
        resolver, _ = create_app_components(use_storage=False, use_llm=False, connectivity=connectivity)
    run_async(resolver, resolver.initialize())
    return resolver, connectivity


def main():
    """Main application entry point."""
    resolver, connectivity = get_components()

    st.sidebar.title("💬 ClariFi Help")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["❓ Ask a Question", "📚 Browse Topics", "📊 Engine Status"],
        index=0,
    )

    st.sidebar.markdown("---")
    online = st.sidebar.toggle("Online", value=connectivity.is_online)
    if online != connectivity.is_online:
        async def report_connectivity():
            connectivity.set_online(online)

        run_async(resolver, report_connectivity())
        st.sidebar.info("Back online: queued actions were replayed." if online else "Working offline.")

    if page == "❓ Ask a Question":
        render_question_page(resolver)
    elif page == "📚 Browse Topics":
        render_topics_page(resolver)
    elif page == "📊 Engine Status":
        render_status_page(resolver)


def answer_card_html(response: QAResponse) -> str:
    """Styled answer box; the answer text is HTML-escaped."""
    box = "fallback-box" if response.is_degraded else "answer-box"
    text = html.escape(response.text).replace("\n", "<br>")
    return f"""
    <div class="{box}">
        <h4>{SOURCE_LABELS[response.source]}</h4>
        <p>{text}</p>
    </div>
    """


def render_answer(resolver: QAResolver, response: QAResponse):
    """Show one answer with its source, follow-ups and feedback buttons."""
    st.markdown(answer_card_html(response), unsafe_allow_html=True)

    if response.suggestions:
        st.markdown("**You might also ask:**")
        for suggestion in response.suggestions:
            st.markdown(f"- {suggestion}")

    if response.faq_id:
        col1, col2 = st.columns(2)
        with col1:
            if st.button("👍 Helpful", key=f"up-{response.faq_id}"):
                sent = run_async(resolver, resolver.submit_feedback(response.faq_id, True))
                st.success("Thanks for your feedback!" if sent else "Saved; we'll send it when you're back online.")
        with col2:
            if st.button("👎 Not helpful", key=f"down-{response.faq_id}"):
                sent = run_async(resolver, resolver.submit_feedback(response.faq_id, False))
                st.success("Thanks for your feedback!" if sent else "Saved; we'll send it when you're back online.")

    with st.expander("🔍 How this was answered"):
        st.markdown(f"**Path:** {' → '.join(state.value for state in response.trace)}")
        if response.match_type:
            st.markdown(f"**Match type:** {response.match_type}")
        if response.confidence is not None:
            st.markdown(f"**Confidence:** {response.confidence:.0%}")
        st.markdown(f"**Response time:** {response.response_time_ms:.0f} ms")


def render_question_page(resolver: QAResolver):
    """Render the question page."""
    st.title("❓ Ask a Question")
    st.markdown("Ask anything about budgeting, credit, banking or using ClariFi.")

    question = st.text_input(
        "Your question:",
        placeholder="e.g., What's the difference between a TFSA and an RRSP?",
    )

    if question and len(question) >= 2:
        suggestions = resolver.suggest(question, limit=5)
        if suggestions:
            st.caption("Suggestions: " + " · ".join(suggestions))

    if st.button("🔍 Get Answer", type="primary") and question:
        with st.spinner("Finding an answer..."):
            response = run_async(resolver, resolver.resolve(question))
        render_answer(resolver, response)


def render_topics_page(resolver: QAResolver):
    """Render the browsable topic list. Works offline."""
    st.title("📚 Help Topics")

    for category in resolver.index.categories():
        with st.expander(f"{category.title} ({len(category.entries)})"):
            st.caption(category.description)
            for position, entry in enumerate(category.entries):
                if st.button(entry.question, key=f"topic-{entry.id}"):
                    run_async(
                        resolver,
                        resolver.record_result_selection(entry.id, f"browse:{category.id}", position),
                    )
                    st.markdown(entry.answer)
                    related = resolver.related_questions(entry.id, limit=3)
                    if related:
                        st.markdown("**Related:** " + " · ".join(item.question for item in related))


def render_status_page(resolver: QAResolver):
    """Render budget, cache, error and configuration status."""
    st.title("📊 Engine Status")
    metrics = resolver.metrics()

    budget = metrics["budget"]
    cache = metrics["cache"]
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("AI answers left", f"{budget['remaining']} / {budget['allowance']}")
    col2.metric("Cache hit rate", f"{cache['hit_rate']:.0%}")
    col3.metric("Cached answers", f"{cache['size']} / {cache['max_entries']}")
    col4.metric("Offline queue", metrics["offline_queue"]["size"])

    st.markdown(f"**Spent:** ${budget['accrued_cost']:.4f} · **Saved:** ${budget['total_cost_savings']:.4f}")
    for recommendation in cache["recommendations"]:
        st.info(recommendation)

    with st.expander("Recent errors"):
        st.json(metrics["errors"])

    st.markdown("---")
    st.markdown("### Connection Status")

    status = validate_all_settings()
    services = [
        ("Google Sheets (Storage)", "google_sheets"),
        ("Gemini (AI answers)", "gemini"),
    ]
    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown(
        "To configure the application, create a `.env` file with your API keys. "
        "See `.env.example` for the required variables."
    )


if __name__ == "__main__":
    main()

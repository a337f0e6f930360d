"""Web interface using Streamlit."""

import datetime
import tempfile
import threading
import uuid
from pathlib import Path

import streamlit as st

from localrag import LocalRAGError, RAGPipeline
from localrag.config import config

config.setup_logging()
logger = config.get_logger(__name__)


class SessionState:
    """Centralized session state management."""

    @staticmethod
    def initialize() -> None:
        """Initialize all session state variables."""
        defaults = {
            "rag_pipeline": None,
            "system_ready": False,
            "session_id": None,
            "messages": [],
            "cancel_event": None,
        }

        for key, default_value in defaults.items():
            if key not in st.session_state:
                st.session_state[key] = default_value

    @staticmethod
    def is_system_ready() -> bool:
        """Check if the pipeline is initialized.

        Returns:
            bool: True if the pipeline has been built and initialized.
        """
        return (
            st.session_state.get("rag_pipeline") is not None
            and st.session_state.get("system_ready", False)
        )

    @staticmethod
    def has_active_session() -> bool:
        return st.session_state.get("session_id") is not None


def validate_configuration() -> bool:
    """Validate application configuration and show user feedback.

    Returns:
        bool: True if configuration is valid, False otherwise.
    """
    try:
        config.validate()
    except ValueError as e:
        st.error(f"Configuration Error: {e}")
        return False
    else:
        return True


def initialize_system() -> bool:
    """Build the RAG pipeline, load the store and the model.

    Returns:
        bool: True if initialization succeeds, False otherwise.
    """
    try:
        with st.spinner("Loading model..."):
            pipeline = RAGPipeline()
            pipeline.initialize()
            st.session_state.rag_pipeline = pipeline
            st.session_state.system_ready = True

        logger.info("RAG system initialized successfully")
        st.success("LLM model loaded successfully!")

    except (LocalRAGError, OSError, RuntimeError) as e:
        logger.exception("Failed to initialize system")
        st.error(f"Failed to load model: {e}")
        return False
    else:
        return True


def start_session() -> None:
    """Open a new chat session with a fresh conversation history."""
    st.session_state.rag_pipeline.reset()
    st.session_state.session_id = str(uuid.uuid4())
    st.session_state.messages = [
        {"role": "assistant", "content": "Session opened. You can start chatting."}
    ]


def end_session() -> None:
    """Cancel any generation, archive the transcript and close the session."""
    if st.session_state.cancel_event is not None:
        st.session_state.cancel_event.set()

    pipeline = st.session_state.rag_pipeline
    transcript = "\n".join(
        f"{message['role'].capitalize()}: {message['content']}"
        for message in st.session_state.messages[1:]
    )
    try:
        with st.spinner("Summarizing session..."):
            summary = pipeline.archive_session(st.session_state.session_id, transcript)
        if summary is not None:
            st.success("Session summary added to the knowledge base.")
    except LocalRAGError as e:
        logger.exception("Failed to archive session")
        st.error(f"Failed to archive session: {e}")

    st.session_state.session_id = None
    st.session_state.messages = []


def process_document(uploaded_file) -> bool:  # noqa: ANN001
    """Process an uploaded file through the RAG pipeline.

    Returns:
        bool: True if document processing succeeds, False otherwise.
    """
    suffix = Path(uploaded_file.name).suffix
    try:
        with tempfile.TemporaryDirectory() as tmp_dir:
            tmp_file_path = Path(tmp_dir) / f"{Path(uploaded_file.name).stem}{suffix}"
            tmp_file_path.write_bytes(uploaded_file.getbuffer())

            with st.spinner(f"Processing '{uploaded_file.name}'..."):
                documents = st.session_state.rag_pipeline.process_document(
                    tmp_file_path
                )

        st.session_state.messages.append(
            {
                "role": "assistant",
                "content": (
                    f"Document added to RAG: {uploaded_file.name} "
                    f"({len(documents)} chunks)"
                ),
            }
        )

    except (LocalRAGError, OSError, ValueError) as e:
        logger.exception("Document processing failed")
        st.error(f"Failed to process document: {e}")
        return False
    else:
        return True


def render_sidebar() -> None:
    """Render the sidebar with system status and session controls."""
    with st.sidebar:
        st.header("System")

        if (
            not SessionState.is_system_ready()
            and st.button("Load Model", use_container_width=True)
            and validate_configuration()
            and initialize_system()
        ):
            st.rerun()

        st.write(
            "**Model:** "
            + (config.CHAT_MODEL if SessionState.is_system_ready() else "Not loaded")
        )
        if SessionState.is_system_ready():
            store = st.session_state.rag_pipeline.store
            mode = "semantic" if store.has_embeddings else "keyword"
            st.write(f"**Knowledge base:** {len(store)} entries ({mode} retrieval)")

        if not SessionState.is_system_ready():
            return

        st.divider()
        st.subheader("Session")
        if not SessionState.has_active_session():
            if st.button("New Session", use_container_width=True):
                start_session()
                st.rerun()
            return

        if st.button("End Chat", use_container_width=True):
            end_session()
            st.rerun()

        uploaded_files = st.file_uploader(
            "Add PDFs or text files to RAG",
            type=["pdf", "txt", "md"],
            accept_multiple_files=True,
        )
        if uploaded_files and st.button("Process Documents", use_container_width=True):
            for uploaded_file in uploaded_files:
                process_document(uploaded_file)
            st.rerun()


def render_chat_interface() -> None:
    """Render the chat transcript and stream new replies."""
    for message in st.session_state.messages:
        with st.chat_message(message["role"]):
            st.markdown(message["content"])

    prompt = st.chat_input("Ask a question...")
    if not prompt or not prompt.strip():
        return

    st.session_state.messages.append({"role": "user", "content": prompt})
    with st.chat_message("user"):
        st.markdown(prompt)

    cancel_event = threading.Event()
    st.session_state.cancel_event = cancel_event
    with st.chat_message("assistant"):
        try:
            reply = st.write_stream(
                st.session_state.rag_pipeline.chat(prompt, cancel_event=cancel_event)
            )
        except LocalRAGError as e:
            logger.exception("Chat failed")
            reply = f"[Error: {e}]"
            st.error(reply)
        finally:
            st.session_state.cancel_event = None

    st.session_state.messages.append({"role": "assistant", "content": reply})


def main() -> None:
    """Main entry point for the Streamlit web application."""
    st.set_page_config(page_title="LocalRAG", layout="wide")

    SessionState.initialize()

    st.title("LocalRAG")
    st.caption(datetime.datetime.now(tz=datetime.UTC).strftime("%Y-%m-%d %H:%M UTC"))

    render_sidebar()

    if not SessionState.is_system_ready():
        st.info("Load the model from the sidebar to get started.")
        return
    if not SessionState.has_active_session():
        st.info("Start a new session from the sidebar.")
        return

    render_chat_interface()


if __name__ == "__main__":
    main()

"""
RAG (Retrieval Augmented Generation) module for the portfolio assistant.

This package grounds the portfolio chat assistant in the owner's actual
projects, skills, experience and persona by retrieving the most relevant
knowledge documents for each visitor question.

Components:
    - document_parser: Extracts text from project files (PDF, text, Markdown)
    - document_builder: Turns structured portfolio records into knowledge documents
    - embedder: Generates embeddings via Google text-embedding-004 (or OpenAI)
    - vector_store: In-memory vector store with a JSON file cache
    - retriever: Query-time retrieval with keyword fallback and context formatting
    - indexer: Offline build of the embeddings cache
"""

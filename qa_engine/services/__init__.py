"""
External service adapters.

Import from the subpackages directly (`qa_engine.services.storage`,
`qa_engine.services.llm`) so that loading one adapter never pulls in the
others' third-party clients.
"""

"""contextpack retrieval and assembly — retriever, assembler, session cache."""

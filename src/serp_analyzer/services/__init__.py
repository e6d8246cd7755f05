"""Analysis pipeline: credential pool, orchestration, decision rule and audit."""

"""Multi-pass categorization pipeline and the canonical category store.

Usage:
    from taxonomist.pipeline.orchestrator import Pipeline

    pipeline = Pipeline(provider, config)
    result = await pipeline.run(records)
    print(result.store.model_dump_json(indent=2))
"""

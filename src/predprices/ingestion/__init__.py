"""Price collection: CLOB client, pacing, collection runs and the adaptive scheduler."""

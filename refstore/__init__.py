"""refstore - versioned ingestion of biological reference datasets."""

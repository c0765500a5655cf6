"""Upload ingestion: format detection, extraction, segmentation and language detection."""

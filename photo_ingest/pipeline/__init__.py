"""
Tiered Photo Ingestion Pipeline

Linear, tier-branched pipeline:
1. Validation + metadata extraction
2. Thumbnail (always)
3. Full-res original and/or compressed preview
4. Optional watermarked preview (photographers)
"""

"""
Content processing: masking, change detection, field filtering, prompts and
response normalization.
"""

from homedecor.engines.conformance.transformer import ImageConformer, decode_image, encode_png

__all__ = ["ImageConformer", "decode_image", "encode_png"]

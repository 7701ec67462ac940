"""Generator nodes.

The model call itself happens elsewhere; here a generator is only its ports
and the last completed result stored in ``data.output``.
"""

from .base import BaseCanvasNode, ProducedValue, image_input_count
from ..handles import image_input, output, prompt_input, video_input
from ..schemas import NodeHandles


class GeneratorNode(BaseCanvasNode):
    OUTPUT_KIND = "image"

    @classmethod
    def produced_value(cls, data):
        result = data.get("output")
        if not result:
            return None
        return ProducedValue(cls.OUTPUT_KIND, result)


class ImagenNode(GeneratorNode):
    NODE_TYPE = "imagen"
    LABEL = "Imagen 4.0"
    DESCRIPTION = "Text to image"
    DEFAULTS = {"prompt": ""}
    INPUTS = [prompt_input()]
    OUTPUTS = [output("image", "Image")]


class NanoBananaNode(GeneratorNode):
    NODE_TYPE = "nanoBanana"
    LABEL = "Nano Banana"
    DESCRIPTION = "Text and reference images to image"
    DEFAULTS = {"prompt": "", "aspectRatio": "1:1"}
    DEFAULT_IMAGE_INPUTS = 1

    @classmethod
    def handles(cls, data):
        count = image_input_count(data, cls.DEFAULT_IMAGE_INPUTS)
        inputs = [prompt_input()]
        inputs += [image_input(f"image_{i}", f"Ref Image {i + 1}") for i in range(count)]
        return NodeHandles(inputs=inputs, outputs=[output("image", "Image")])


class NanoBananaProNode(NanoBananaNode):
    NODE_TYPE = "nanoBananaPro"
    LABEL = "Nano Banana Pro"
    DESCRIPTION = "Higher resolution Nano Banana with optional search grounding"
    DEFAULTS = {"prompt": "", "imageSize": "1K", "useGoogleSearch": False}


class Veo3Node(GeneratorNode):
    NODE_TYPE = "veo3"
    LABEL = "Veo 3"
    DESCRIPTION = "Text, first frame and references to video"
    DEFAULTS = {
        "prompt": "",
        "resolution": "720p",
        "durationSeconds": "8",
        "aspectRatio": "16:9",
        "imageInputCount": 0,
    }
    OUTPUT_KIND = "video"

    @classmethod
    def handles(cls, data):
        count = image_input_count(data, 0)
        inputs = [prompt_input(), image_input("image", "First Frame")]
        inputs += [image_input(f"ref_image_{i}", f"Ref {i + 1}") for i in range(count)]
        inputs.append(video_input("video", "Extend Video"))
        return NodeHandles(inputs=inputs, outputs=[output("video", "Video")])

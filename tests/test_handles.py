import unittest

from opencanvas.handles import IMAGE_OUTPUT, TEXT_OUTPUT, ConnectedField, edge_color, EDGE_COLORS
from opencanvas.node_registry import registry


def ids(handles):
    return [h.id for h in handles]


class TestHandlesFor(unittest.TestCase):
    def test_imagen_has_prompt_and_image_output(self):
        handles = registry.handles_for("imagen", {})
        self.assertEqual(ids(handles.inputs), ["prompt"])
        self.assertEqual(ids(handles.outputs), [IMAGE_OUTPUT])
        self.assertTrue(handles.inputs[0].required)
        self.assertEqual(handles.inputs[0].allowedSourceIds, [TEXT_OUTPUT])

    def test_input_nodes_only_have_outputs(self):
        text = registry.handles_for("textInput", {"text": "hi"})
        upload = registry.handles_for("imageUpload", {})
        self.assertEqual(ids(text.inputs), [])
        self.assertEqual(ids(text.outputs), ["textOutput"])
        self.assertEqual(ids(upload.outputs), ["imageOutput"])

    def test_nano_banana_image_inputs_follow_count(self):
        handles = registry.handles_for("nanoBanana", {"imageInputCount": 3})
        self.assertEqual(ids(handles.inputs), ["prompt", "image_0", "image_1", "image_2"])
        for handle in handles.inputs[1:]:
            self.assertEqual(handle.type, "image")
            self.assertEqual(handle.allowedSourceIds, [IMAGE_OUTPUT])

    def test_nano_banana_falls_back_to_one_image_input(self):
        for data in ({}, {"imageInputCount": 0}, {"imageInputCount": "lots"}, {"imageInputCount": None}):
            with self.subTest(data=data):
                handles = registry.handles_for("nanoBanana", data)
                self.assertEqual(ids(handles.inputs), ["prompt", "image_0"])

    def test_nano_banana_pro_shares_port_layout(self):
        self.assertEqual(
            registry.handles_for("nanoBananaPro", {"imageInputCount": 2}),
            registry.handles_for("nanoBanana", {"imageInputCount": 2}),
        )

    def test_veo3_defaults_to_no_reference_images(self):
        handles = registry.handles_for("veo3", {})
        self.assertEqual(ids(handles.inputs), ["prompt", "image", "video"])
        self.assertEqual(ids(handles.outputs), ["videoOutput"])

    def test_veo3_reference_images(self):
        handles = registry.handles_for("veo3", {"imageInputCount": 2})
        self.assertEqual(ids(handles.inputs), ["prompt", "image", "ref_image_0", "ref_image_1", "video"])
        self.assertEqual(handles.inputs[-1].allowedSourceIds, ["videoOutput"])

    def test_unknown_kind_has_no_handles(self):
        handles = registry.handles_for("doesNotExist", {"imageInputCount": 4})
        self.assertEqual(handles.inputs, [])
        self.assertEqual(handles.outputs, [])
        self.assertEqual(registry.handles_for(None).inputs, [])

    def test_handles_for_is_pure(self):
        data = {"imageInputCount": 2}
        first = registry.handles_for("veo3", data)
        second = registry.handles_for("veo3", data)
        self.assertEqual(first, second)
        self.assertEqual(data, {"imageInputCount": 2})


class TestConnectedField(unittest.TestCase):
    def test_handle_to_field(self):
        cases = {
            "prompt": "connectedPrompt",
            "image": "connectedImage",
            "image_2": "connectedImage_2",
            "ref_image_1": "connectedRefImage_1",
            "video": "connectedVideo",
        }
        for handle_id, field_name in cases.items():
            with self.subTest(handle=handle_id):
                connected = ConnectedField.for_handle(handle_id)
                self.assertEqual(connected.field_name, field_name)
                self.assertEqual(connected.handle_id, handle_id)
                self.assertEqual(ConnectedField.from_field_name(field_name), connected)

    def test_kinds(self):
        self.assertEqual(ConnectedField.for_handle("prompt").kind, "text")
        self.assertEqual(ConnectedField.for_handle("ref_image_0").kind, "image")
        self.assertEqual(ConnectedField.for_handle("video").kind, "video")

    def test_unmapped_names(self):
        self.assertIsNone(ConnectedField.for_handle("textOutput"))
        self.assertIsNone(ConnectedField.for_handle(None))
        self.assertIsNone(ConnectedField.from_field_name("prompt"))
        self.assertIsNone(ConnectedField.from_field_name("connectedImage_x"))

    def test_edge_color_by_source_kind(self):
        self.assertEqual(edge_color("textOutput"), EDGE_COLORS["text"])
        self.assertEqual(edge_color("videoOutput"), EDGE_COLORS["video"])
        self.assertEqual(edge_color("somethingElse"), EDGE_COLORS["default"])


class TestNodeRegistry(unittest.TestCase):
    def test_palette_lists_every_kind(self):
        types = {meta.type for meta in registry.get_all_metadata()}
        self.assertEqual(types, {"textInput", "imageUpload", "imagen", "nanoBanana", "nanoBananaPro", "veo3"})

    def test_create_node_stores_current_ports(self):
        node = registry.create_node("nanoBanana", node_id="nb-1")
        self.assertEqual(node.id, "nb-1")
        self.assertEqual(node.type, "nanoBanana")
        self.assertEqual(node.data["label"], "Nano Banana")
        self.assertEqual([h["id"] for h in node.data["inputs"]], ["prompt", "image_0"])
        self.assertEqual([h["id"] for h in node.data["outputs"]], ["imageOutput"])

    def test_create_node_generates_ids(self):
        first = registry.create_node("textInput")
        second = registry.create_node("textInput")
        self.assertTrue(first.id.startswith("textInput-"))
        self.assertNotEqual(first.id, second.id)


if __name__ == "__main__":
    unittest.main()

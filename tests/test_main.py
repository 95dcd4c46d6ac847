"""Tests for the command line interface."""

import pytest
import numpy as np
from PIL import Image

import main


class TestParser:
    """Test argument parsing."""

    def test_render_defaults(self):
        args = main.build_parser().parse_args([])
        assert args.func is main.render
        assert args.width == 1024
        assert args.height == 768
        assert args.samples == 1
        assert args.threads == 0
        assert args.agent == []
        assert args.remote_timeout is None
        assert args.scene == 'cornell'

    def test_repeated_agents(self):
        args = main.build_parser().parse_args(
            ['--agent', 'http://a:4000/', '--agent', 'http://b:4000/'])
        assert args.agent == ['http://a:4000/', 'http://b:4000/']

    def test_serve(self):
        args = main.build_parser().parse_args(['serve', '--port', '4100'])
        assert args.func is main.serve
        assert args.port == 4100
        assert args.host == '0.0.0.0'
        assert args.threads == 0

    def test_serve_threads(self):
        args = main.build_parser().parse_args(['serve', '--threads', '3'])
        assert args.threads == 3

    def test_unknown_scene(self):
        with pytest.raises(SystemExit):
            main.build_parser().parse_args(['--scene', 'teapot'])


class TestRenderCommand:
    """Test a full render from the command line."""

    def test_writes_image(self, tmp_path, capsys):
        output = tmp_path / "out" / "render.png"
        code = main.main(['--width', '8', '--height', '6', '--threads', '2',
                          '--tile-size', '4', '--output', str(output)])

        assert code == 0
        assert output.exists()
        assert np.asarray(Image.open(output)).shape == (6, 8, 3)
        assert "Done!" in capsys.readouterr().out

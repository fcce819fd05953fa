"""Unit tests for image validation, Cloudinary uploads and default item grants."""
import io
from types import SimpleNamespace
from unittest import mock

import pytest
from werkzeug.datastructures import FileStorage

from backend.errors import UploadError, ValidationError
from backend.services import default_items, uploads

PNG = b'\x89PNG\r\n\x1a\n' + b'\x00' * 16


def _file(data, name):
    return FileStorage(stream=io.BytesIO(data), filename=name, content_type='image/png')


class TestValidateImage:
    def test_png_passes_and_stream_is_rewound(self):
        storage = _file(PNG, 'tulip.png')
        uploads.validate_image(storage)
        assert storage.stream.tell() == 0

    def test_extension_is_checked(self):
        with pytest.raises(ValidationError):
            uploads.validate_image(_file(PNG, 'tulip.exe'))

    def test_content_is_checked(self):
        with pytest.raises(ValidationError):
            uploads.validate_image(_file(b'plain text, not an image', 'tulip.png'))

    def test_public_id_strips_extension(self):
        assert uploads.public_id_for('../my tulip.png') == 'my_tulip'


class TestUploadImage:
    def test_unconfigured_cloudinary(self):
        with mock.patch.object(uploads, '_configured', False), \
                mock.patch.object(uploads, 'init_cloudinary', return_value=False):
            with pytest.raises(UploadError) as excinfo:
                uploads.upload_image(_file(PNG, 'tulip.png'), 'plants')
        assert excinfo.value.status_code == 503

    def test_upload_uses_preset_and_folder(self):
        result = {'secure_url': 'https://res.cloudinary.com/x/tulip.png', 'public_id': 'images/plants/tulip'}
        with mock.patch.object(uploads, '_configured', True), \
                mock.patch.object(uploads.cloudinary.uploader, 'upload', return_value=result) as upload:
            assert uploads.upload_image(_file(PNG, 'tulip.png'), 'plants') == result
        kwargs = upload.call_args.kwargs
        assert kwargs['upload_preset'] == 'git-plants(plants)'
        assert kwargs['folder'] == 'images/plants'
        assert kwargs['public_id'] == 'tulip'

    def test_unknown_target(self):
        with pytest.raises(ValidationError):
            uploads.upload_image(_file(PNG, 'tulip.png'), 'hats')


class TestDefaultItems:
    def test_grants_are_grouped(self):
        defaults = [
            SimpleNamespace(id=1, name='default_garden', category='background', mode='GARDEN'),
            SimpleNamespace(id=2, name='default_mini', category='background', mode='MINI'),
            SimpleNamespace(id=3, name='default_pot', category='pot', mode='DEFAULT'),
        ]
        with mock.patch.object(default_items.GardenItem, 'get_defaults', return_value=defaults), \
                mock.patch.object(default_items.UserItem, 'grant', return_value=[1, 3]):
            result = default_items.award_default_items(5)
        assert result == {'backgrounds': {'garden': ['default_garden'], 'mini': []}, 'pots': ['default_pot']}

    def test_database_failure_is_logged_not_raised(self):
        with mock.patch.object(default_items.GardenItem, 'get_defaults', side_effect=RuntimeError('down')):
            assert default_items.award_default_items(5)['pots'] == []

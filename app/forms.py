from flask_wtf import FlaskForm
from flask_wtf.file import FileAllowed, FileField, FileRequired
from wtforms import IntegerField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional


class ApiForm(FlaskForm):
    class Meta:
        # token CSRF untuk request JSON sudah dicek oleh CSRFProtect (header X-CSRFToken)
        csrf = False


class StockOpnameForm(ApiForm):
    notes = TextAreaField('Catatan', validators=[Optional(), Length(max=2000)])
    branch_id = IntegerField('Cabang', validators=[Optional()])


class StockOpnameItemForm(ApiForm):
    product_id = IntegerField('Produk', validators=[DataRequired(message='Produk wajib dipilih.')])
    # validasi angka >= 0 dilakukan di service
    counted_quantity = StringField('Jumlah Fisik')
    notes = StringField('Catatan', validators=[Optional(), Length(max=255)])


class RejectStockOpnameForm(ApiForm):
    admin_notes = TextAreaField('Alasan Penolakan', validators=[Length(max=2000)])


class StockOpnameImportForm(ApiForm):
    file = FileField(
        'File',
        validators=[
            FileRequired(message='Tidak ada file yang diunggah!'),
            FileAllowed(['csv', 'xlsx', 'xls'], message='File harus berformat .csv atau .xlsx.'),
        ],
    )

from flask_wtf import FlaskForm
from wtforms import StringField, TextAreaField
from wtforms.validators import InputRequired, Length, Optional


class FolderForm(FlaskForm):
    class Meta:
        csrf = False

    name = StringField("Folder name", validators=[InputRequired(), Length(max=150)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=2000)])


class FolderUpdateForm(FolderForm):
    name = StringField("Folder name", validators=[Optional(), Length(max=150)])


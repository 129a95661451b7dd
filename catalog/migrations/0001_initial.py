import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=200)),
                ('slug', models.SlugField(blank=True, max_length=200, unique=True)),
                ('description', models.TextField(blank=True, null=True)),
                ('price', models.DecimalField(decimal_places=2, max_digits=10)),
                ('original_price', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('category', models.CharField(choices=[('Silk Sarees', 'Silk Sarees'), ('Cotton Sarees', 'Cotton Sarees'), ('Designer Sarees', 'Designer Sarees'), ('Bridal Sarees', 'Bridal Sarees'), ('Festive Wear', 'Festive Wear'), ('Casual Sarees', 'Casual Sarees')], db_index=True, max_length=60)),
                ('fabric', models.CharField(blank=True, default='', max_length=60)),
                ('color', models.CharField(blank=True, default='', max_length=60)),
                ('stock_quantity', models.IntegerField(blank=True, null=True)),
                ('images', models.JSONField(blank=True, default=list)),
                ('active', models.BooleanField(db_index=True, default=True)),
                ('featured', models.BooleanField(db_index=True, default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['-featured', '-created_at'],
                'indexes': [models.Index(fields=['active', 'category'], name='catalog_prod_active_cat_idx')],
            },
        ),
    ]
